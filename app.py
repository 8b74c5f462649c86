import asyncio
import json
import logging
import time
from flask import request, jsonify
from marshmallow import ValidationError

from main import app
from models import db, BackendConfig, RequestLog
from records.client import BackendClient
from records.errors import EditError, FetchFailed, NotFound
from records.fetcher import ResourceFetcher
from records.joiner import CrossReferenceJoiner
from records.paginator import PAGE_SIZES, Paginator
from records.resources import SUPPORTED_TYPES, adapter_for
from records.state import DraftSession, ListState, RecordList, SetFilter, SetSort, reduce
from records.submission import Failure, SubmissionPipeline, reconcile
from records.templates import new_condition
from validators import (
    BackendConfigSchema, ConditionFormSchema, EditRequestSchema, ListQuerySchema,
    validate_resource_type,
)

logger = logging.getLogger(__name__)


# --- Helpers ---

def _active_backend():
    """Return (base_url, token, config_id) of the backend requests should go to."""
    config = BackendConfig.query.filter_by(is_default=True).first()
    if config:
        return config.base_url, config.token or '', config.id
    return app.config['FHIR_BASE_URL'], app.config['FHIR_TOKEN'], None


def _request_token(default):
    """Prefer the caller's bearer token over the configured one."""
    header = request.headers.get('Authorization', '')
    if header[:7].lower() == 'bearer ':
        return header[7:].strip()
    return default


def _client(base_url, token):
    return BackendClient(
        base_url,
        token=token,
        timeout=app.config['FHIR_TIMEOUT'],
        transport=app.config.get('FHIR_TRANSPORT'),
    )


def _run(coro):
    """Run a coroutine to completion from a synchronous view."""
    return asyncio.run(coro)


def _failure_status(cause):
    if isinstance(cause, NotFound):
        return 404
    if isinstance(cause, FetchFailed):
        return 502
    if isinstance(cause, ValueError):
        return 400
    return 500


def _log_request(method, resource_type, started, status_code, outcome,
                 resource_id=None, params=None, error=None, config_id=None):
    """Persist a RequestLog entry; logging failures never fail the request."""
    entry = RequestLog(
        method=method,
        resource_type=resource_type,
        resource_id=resource_id,
        query_params=json.dumps(params) if params else None,
        response_status=status_code,
        outcome=outcome,
        error_message=error,
        execution_time_ms=(time.time() - started) * 1000,
        backend_config_id=config_id,
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except Exception as e:
        logger.error(f"Failed to record request log: {str(e)}")
        db.session.rollback()


def _failure(cause, status_code=None, **extra):
    body = {'status': 'failure', 'error': str(cause)}
    body.update(extra)
    return jsonify(body), status_code or _failure_status(cause)


# --- Status and configuration ---

@app.route('/api/status', methods=['GET'])
def api_status():
    """Return the active backend and engine settings."""
    base_url, token, config_id = _active_backend()
    return jsonify({
        'service': 'running',
        'backend': {
            'base_url': base_url,
            'config_id': config_id,
            'has_token': bool(token),
        },
        'supported_types': list(SUPPORTED_TYPES),
        'page_sizes': list(PAGE_SIZES),
        'join': {
            'concurrency': app.config['FHIR_JOIN_CONCURRENCY'],
            'timeout': app.config['FHIR_JOIN_TIMEOUT'],
        },
    })


@app.route('/api/configs', methods=['GET'])
def get_configurations():
    """List stored backend configurations."""
    configs = BackendConfig.query.order_by(BackendConfig.id).all()
    return jsonify({'configs': [config.to_dict() for config in configs]})


@app.route('/api/configs', methods=['POST'])
def create_configuration():
    """Store a backend configuration, optionally making it the default."""
    try:
        data = BackendConfigSchema().load(request.get_json(silent=True) or {})
    except ValidationError as err:
        return jsonify({'error': err.messages}), 400

    if data.get('is_default'):
        BackendConfig.query.filter_by(is_default=True).update({'is_default': False})

    config = BackendConfig(
        base_url=data['base_url'],
        token=data.get('token'),
        name=data.get('name'),
        is_default=data.get('is_default', False),
    )
    db.session.add(config)
    db.session.commit()
    logger.debug(f"Created backend configuration: {config.name} ({config.id})")
    return jsonify({'config': config.to_dict()}), 201


@app.route('/api/configs/<int:config_id>/activate', methods=['POST'])
def activate_configuration(config_id):
    """Make a stored configuration the default backend."""
    config = db.session.get(BackendConfig, config_id)
    if not config:
        return jsonify({'error': 'Configuration not found'}), 404

    BackendConfig.query.filter_by(is_default=True).update({'is_default': False})
    config.is_default = True
    db.session.commit()
    logger.debug(f"Activated backend configuration: {config.name} ({config.id})")
    return jsonify({'message': 'Configuration activated successfully', 'config': config.to_dict()})


@app.route('/api/configs/<int:config_id>', methods=['DELETE'])
def delete_configuration(config_id):
    """Delete a stored configuration."""
    config = db.session.get(BackendConfig, config_id)
    if not config:
        return jsonify({'error': 'Configuration not found'}), 404

    db.session.delete(config)
    db.session.commit()
    logger.debug(f"Deleted backend configuration {config_id}")
    return jsonify({'message': 'Configuration deleted successfully'})


# --- Record list ---

@app.route('/api/records/<resource_type>', methods=['GET'])
def list_records(resource_type):
    """Fetch a page, join related records, then filter and sort it."""
    try:
        validate_resource_type(resource_type)
        params = ListQuerySchema().load(request.args.to_dict())
    except ValidationError as err:
        return jsonify({'status': 'failure', 'error': err.messages}), 400

    base_url, token, config_id = _active_backend()
    token = _request_token(token)
    adapter = adapter_for(resource_type)

    state = ListState.initial(
        resource_type, Paginator(page_size=params['count'], offset=params['offset'])
    )
    if params['filter_attribute'] or params['query']:
        state = reduce(state, SetFilter(
            attribute=params['filter_attribute'] or adapter.default_filter,
            query=params['query'],
            case_sensitive=params['case_sensitive'],
        ))
    if params['sort']:
        state = reduce(state, SetSort(params['sort']))

    async def load():
        async with _client(base_url, token) as client:
            fetcher = ResourceFetcher(client)
            joiner = CrossReferenceJoiner(
                fetcher,
                concurrency=app.config['FHIR_JOIN_CONCURRENCY'],
                timeout=app.config['FHIR_JOIN_TIMEOUT'],
            )
            listing = RecordList(fetcher, joiner, state)
            await listing.refresh()
            return listing

    started = time.time()
    listing = _run(load())
    result = listing.state
    status_code = 200 if result.status == 'success' else 502
    _log_request('GET', resource_type, started, status_code, result.status,
                 params=request.args.to_dict(), config_id=config_id)

    rows = listing.rows()
    paginator = result.paginator
    return jsonify({
        'status': result.status,
        'resource_type': resource_type,
        'page': {
            'count': paginator.page_size,
            'offset': paginator.offset,
            'next_offset': paginator.next_offset,
            'previous_offset': paginator.previous_offset,
        },
        'filter': {
            'attribute': adapter.resolve_filter_attribute(result.filter.attribute),
            'query': result.filter.query,
            'case_sensitive': result.filter.case_sensitive,
        },
        'sort': result.sort.attribute if result.sort else None,
        'end_of_data': result.end_of_data,
        'total': len(rows),
        'rows': [
            {'record': record, 'related': related, 'summary': adapter.summarize(record)}
            for record, related in rows
        ],
    }), status_code


# --- Single record ---

@app.route('/api/records/<resource_type>/<resource_id>', methods=['GET'])
def get_record(resource_type, resource_id):
    """Fetch one record by id."""
    try:
        validate_resource_type(resource_type)
    except ValidationError as err:
        return jsonify({'status': 'failure', 'error': err.messages}), 400

    base_url, token, config_id = _active_backend()
    token = _request_token(token)

    async def load():
        async with _client(base_url, token) as client:
            return await ResourceFetcher(client).fetch_by_id(resource_type, resource_id)

    started = time.time()
    try:
        record = _run(load())
    except (NotFound, FetchFailed) as e:
        logger.error(f"Error reading {resource_type}/{resource_id}: {str(e)}")
        _log_request('GET', resource_type, started, _failure_status(e), 'failure',
                     resource_id=resource_id, error=str(e), config_id=config_id)
        return _failure(e)

    _log_request('GET', resource_type, started, 200, 'success',
                 resource_id=resource_id, config_id=config_id)
    return jsonify({
        'status': 'success',
        'record': record,
        'summary': adapter_for(resource_type).summarize(record),
    })


# --- Submissions ---

def _submit(method, resource_type, resource_id, submit):
    """Run a submission coroutine factory and answer with its outcome."""
    base_url, token, config_id = _active_backend()
    token = _request_token(token)

    async def run():
        async with _client(base_url, token) as client:
            return await submit(client)

    started = time.time()
    outcome, record = _run(run())
    if outcome.ok:
        status_code = 201 if method == 'POST' else 200
        _log_request(method, resource_type, started, status_code, 'success',
                     resource_id=resource_id, config_id=config_id)
        return jsonify({'status': 'success', 'record': record}), status_code

    status_code = _failure_status(outcome.cause)
    _log_request(method, resource_type, started, status_code, 'failure',
                 resource_id=resource_id, error=str(outcome.cause), config_id=config_id)
    return _failure(outcome.cause, status_code, record=record)


@app.route('/api/records/<resource_type>', methods=['POST'])
def create_record(resource_type):
    """Create a record from a full resource body."""
    try:
        validate_resource_type(resource_type)
    except ValidationError as err:
        return jsonify({'status': 'failure', 'error': err.messages}), 400

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({'status': 'failure', 'error': 'Request body must be a JSON object'}), 400
    verify_subject = request.args.get('verify_subject', '').lower() in ('1', 'true', 'yes')

    async def submit(client):
        outcome = await SubmissionPipeline(client).create(
            resource_type, body, verify_subject=verify_subject
        )
        return outcome, reconcile(None, body, outcome)

    return _submit('POST', resource_type, None, submit)


@app.route('/api/records/Condition/form', methods=['POST'])
def create_condition_from_form():
    """Create a Condition from form fields after checking the patient exists."""
    try:
        form = ConditionFormSchema().load(request.get_json(silent=True) or {})
        condition = new_condition(**form)
    except ValidationError as err:
        return jsonify({'status': 'failure', 'error': err.messages}), 400
    except EditError as e:
        return jsonify({'status': 'failure', 'error': {'recorded_date': [str(e)]}}), 400

    session = DraftSession(template=condition)

    async def submit(client):
        outcome = await session.save(SubmissionPipeline(client), verify_subject=True)
        return outcome, session.record if outcome.ok else session.draft

    return _submit('POST', 'Condition', None, submit)


@app.route('/api/records/<resource_type>/<resource_id>', methods=['PUT'])
def replace_record(resource_type, resource_id):
    """Update a record with a full resource body."""
    try:
        validate_resource_type(resource_type)
    except ValidationError as err:
        return jsonify({'status': 'failure', 'error': err.messages}), 400

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({'status': 'failure', 'error': 'Request body must be a JSON object'}), 400

    async def submit(client):
        outcome = await SubmissionPipeline(client).update(resource_type, resource_id, body)
        return outcome, reconcile(None, body, outcome)

    return _submit('PUT', resource_type, resource_id, submit)


@app.route('/api/records/<resource_type>/<resource_id>', methods=['PATCH'])
def edit_record(resource_type, resource_id):
    """Apply path edits to the stored record and submit the result."""
    try:
        validate_resource_type(resource_type)
        edits = EditRequestSchema().load(request.get_json(silent=True) or {})['edits']
    except ValidationError as err:
        return jsonify({'status': 'failure', 'error': err.messages}), 400

    async def submit(client):
        try:
            record = await ResourceFetcher(client).fetch_by_id(resource_type, resource_id)
        except (NotFound, FetchFailed) as e:
            return Failure(e), None

        session = DraftSession(record)
        try:
            for edit in edits:
                session.edit(edit['path'], edit['value'])
        except EditError as e:
            return Failure(e), record

        outcome = await session.save(SubmissionPipeline(client))
        return outcome, session.record

    return _submit('PATCH', resource_type, resource_id, submit)


@app.route('/api/records/<resource_type>/<resource_id>', methods=['DELETE'])
def delete_record(resource_type, resource_id):
    """Delete a record."""
    try:
        validate_resource_type(resource_type)
    except ValidationError as err:
        return jsonify({'status': 'failure', 'error': err.messages}), 400

    async def submit(client):
        outcome = await SubmissionPipeline(client).remove(resource_type, resource_id)
        return outcome, None

    return _submit('DELETE', resource_type, resource_id, submit)


# --- Request log ---

@app.route('/api/logs', methods=['GET'])
def get_logs():
    """Return recent request log entries, newest first."""
    try:
        limit = min(int(request.args.get('limit', 100)), 500)
    except ValueError:
        return jsonify({'error': 'limit must be an integer'}), 400

    query = RequestLog.query
    resource_type = request.args.get('resource_type')
    method = request.args.get('method')
    if resource_type:
        query = query.filter(RequestLog.resource_type == resource_type)
    if method:
        query = query.filter(RequestLog.method == method.upper())

    logs = query.order_by(RequestLog.created_at.desc(), RequestLog.id.desc()).limit(limit).all()
    return jsonify({'logs': [log.to_dict() for log in logs]})


@app.errorhandler(404)
def page_not_found(e):
    return jsonify({'error': 'Not found'}), 404


@app.errorhandler(500)
def server_error(e):
    logger.error(f"Server error: {str(e)}")
    return jsonify({'error': 'Internal server error'}), 500
