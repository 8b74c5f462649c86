from datetime import datetime, timezone
from flask_sqlalchemy import SQLAlchemy

# Initialize SQLAlchemy without binding it to a specific app
db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


class BackendConfig(db.Model):
    """
    Database model for FHIR backend configurations.
    Stores the base URL and bearer token used to reach a resource server.
    """
    __tablename__ = 'backend_configs'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, default="Default FHIR Backend")
    base_url = db.Column(db.String(255), nullable=False)
    token = db.Column(db.String(2048), nullable=True)
    is_default = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def __init__(self, base_url, token=None, name=None, is_default=False):
        """
        Initialize a backend configuration.

        Args:
            base_url (str): Base URL of the FHIR server
            token (str): Bearer token sent with every request (empty for no auth)
            name (str): Friendly name for this configuration
            is_default (bool): Whether this is the active configuration
        """
        self.base_url = base_url
        self.token = token
        self.name = name or "Default FHIR Backend"
        self.is_default = is_default

    def to_dict(self, include_sensitive=False):
        """
        Convert the configuration to a dictionary.

        Args:
            include_sensitive (bool): Whether to include the bearer token

        Returns:
            dict: Configuration as a dictionary
        """
        result = {
            'id': self.id,
            'name': self.name,
            'base_url': self.base_url,
            'has_token': bool(self.token),
            'is_default': self.is_default,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }

        if include_sensitive:
            result['token'] = self.token

        return result


class RequestLog(db.Model):
    """
    Database model for logging backend requests made on behalf of API calls.
    """
    __tablename__ = 'request_logs'

    id = db.Column(db.Integer, primary_key=True)
    method = db.Column(db.String(10), nullable=False)  # GET, POST, PUT, PATCH, DELETE
    resource_type = db.Column(db.String(50), nullable=True)  # Patient, Condition, etc.
    resource_id = db.Column(db.String(64), nullable=True)
    query_params = db.Column(db.Text, nullable=True)  # JSON string of query parameters
    response_status = db.Column(db.Integer, nullable=True)  # Status returned to our caller
    outcome = db.Column(db.String(10), nullable=True)  # success / failure
    error_message = db.Column(db.Text, nullable=True)
    execution_time_ms = db.Column(db.Float, nullable=True)
    backend_config_id = db.Column(db.Integer, db.ForeignKey('backend_configs.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow)

    backend_config = db.relationship('BackendConfig', backref=db.backref('request_logs', lazy=True))

    def to_dict(self):
        return {
            'id': self.id,
            'method': self.method,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'query_params': self.query_params,
            'response_status': self.response_status,
            'outcome': self.outcome,
            'error_message': self.error_message,
            'execution_time_ms': self.execution_time_ms,
            'backend_config_id': self.backend_config_id,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
