import os
import logging
from flask import Flask
from models import db
from records.client import DEFAULT_BASE_URL, DEFAULT_TIMEOUT
from records.joiner import DEFAULT_CONCURRENCY, DEFAULT_JOIN_TIMEOUT

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "DEBUG").upper(),
                   format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# Create the Flask app
app = Flask(__name__)

# Configure the app
app.secret_key = os.environ.get("SESSION_SECRET") or "a-development-secret-key"

# Configure the database - use SQLite for development
app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get("SQLALCHEMY_DATABASE_URI", "sqlite:///records.db")
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

# FHIR backend defaults, overridden by a stored default BackendConfig
app.config["FHIR_BASE_URL"] = DEFAULT_BASE_URL
app.config["FHIR_TOKEN"] = os.environ.get("FHIR_TOKEN", "")
app.config["FHIR_TIMEOUT"] = DEFAULT_TIMEOUT
app.config["FHIR_JOIN_CONCURRENCY"] = DEFAULT_CONCURRENCY
app.config["FHIR_JOIN_TIMEOUT"] = DEFAULT_JOIN_TIMEOUT
# Optional httpx transport; tests install an httpx.MockTransport here
app.config["FHIR_TRANSPORT"] = None

logger.debug(f"Using database URL: {app.config['SQLALCHEMY_DATABASE_URI']}")
logger.debug(f"Default FHIR backend: {app.config['FHIR_BASE_URL']}")

# Initialize the database with the app
db.init_app(app)

# Create database tables if they don't exist
with app.app_context():
    # Import models to ensure they're registered
    from models import BackendConfig, RequestLog
    db.create_all()
    logger.info("Database tables created successfully")

# Import routes after initializing the app to avoid circular imports
from app import *

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
