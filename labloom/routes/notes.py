from datetime import datetime, timezone

import markdown
from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError
from sqlalchemy import or_

from labloom import db
from labloom.models import Note
from labloom.schemas import NotePayload, NoteUpdatePayload, format_validation_error

bp = Blueprint('notes', __name__)

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Headers': 'Content-Type',
    'Access-Control-Allow-Methods': 'GET,POST,PUT,PATCH,DELETE,OPTIONS',
}


def json_response(status_code, body, headers=None):
    response = jsonify(body)
    response.status_code = status_code
    for key, value in (headers or {}).items():
        response.headers[key] = value
    return response


def no_content():
    return '', 204


def bad_request(message):
    return json_response(400, {'error': 'BAD_REQUEST', 'message': message})


def not_found(message):
    return json_response(404, {'error': 'NOT_FOUND', 'message': message})


def method_not_allowed(methods):
    return json_response(
        405,
        {'error': 'METHOD_NOT_ALLOWED', 'message': f"Method not allowed. Use: {', '.join(methods)}"},
        {'Allow': ', '.join(methods)},
    )


def handle_error(error):
    current_app.logger.error(f"Notes handler error: {error}")
    db.session.rollback()
    return json_response(500, {
        'error': 'INTERNAL_SERVER_ERROR',
        'message': 'Something went wrong while processing the request.',
    })


@bp.after_app_request
def add_cors_headers(response):
    for key, value in CORS_HEADERS.items():
        response.headers.setdefault(key, value)
    return response


@bp.app_errorhandler(404)
def handle_unknown_route(error):
    return not_found('No such endpoint.')


@bp.app_errorhandler(405)
def handle_method_not_allowed(error):
    return method_not_allowed(sorted(error.valid_methods or []))


def parse_payload(schema):
    """Validate the JSON body; returns (payload, None) or (None, error response)."""
    body = request.get_json(silent=True)
    if body is None:
        if not request.get_data():
            return None, bad_request('Request body is empty.')
        return None, bad_request('Request body is not valid JSON.')
    if not isinstance(body, dict):
        return None, bad_request('Request body must be a JSON object.')
    try:
        return schema.model_validate(body), None
    except ValidationError as e:
        return None, bad_request(format_validation_error(e))


@bp.route('/notes-read', methods=['GET', 'OPTIONS'], provide_automatic_options=False)
def read_notes():
    """One note by ?id=, or every note matching search/category/tags."""
    if request.method == 'OPTIONS':
        return no_content()

    try:
        note_id = request.args.get('id')
        if note_id:
            note = db.session.get(Note, note_id)
            if note is None:
                return not_found('The requested note could not be found.')
            return json_response(200, note.to_dict())

        search = request.args.get('search', '').strip()
        category = request.args.get('category')
        tags_param = request.args.get('tags')

        query = Note.query
        if category:
            query = query.filter(Note.category == category)
        if search:
            like = f'%{search}%'
            query = query.filter(or_(Note.title.ilike(like), Note.content.ilike(like)))

        wanted = []
        if tags_param is not None:
            wanted = [tag.strip() for tag in tags_param.split(',') if tag.strip()]
            if not wanted:
                return bad_request('The tags filter is not valid.')

        notes = query.order_by(Note.updated_at.desc()).all()
        if wanted:
            # JSON columns are not portable to query, filter in Python
            notes = [note for note in notes if all(tag_id in note.tag_ids for tag_id in wanted)]

        return json_response(200, [note.to_dict() for note in notes])
    except Exception as e:
        return handle_error(e)


@bp.route('/notes-create', methods=['POST', 'OPTIONS'], provide_automatic_options=False)
def create_note():
    """Create a note."""
    if request.method == 'OPTIONS':
        return no_content()

    payload, error = parse_payload(NotePayload)
    if error:
        return error

    try:
        note = Note()
        note.apply_payload(payload)
        db.session.add(note)
        db.session.commit()
        current_app.logger.info(f"Created note {note.id}")
        return json_response(201, note.to_dict())
    except Exception as e:
        return handle_error(e)


@bp.route('/notes-update', methods=['PUT', 'PATCH', 'OPTIONS'], provide_automatic_options=False)
def update_note():
    """Replace every editable field of an existing note."""
    if request.method == 'OPTIONS':
        return no_content()

    payload, error = parse_payload(NoteUpdatePayload)
    if error:
        return error

    try:
        note = db.session.get(Note, payload.id)
        if note is None:
            return not_found('The note to update could not be found.')

        note.apply_payload(payload)
        note.updated_at = datetime.now(timezone.utc)
        db.session.commit()
        db.session.refresh(note)
        return json_response(200, note.to_dict())
    except Exception as e:
        return handle_error(e)


@bp.route('/notes-delete', methods=['DELETE', 'OPTIONS'], provide_automatic_options=False)
def delete_note():
    """Delete a note by ?id=."""
    if request.method == 'OPTIONS':
        return no_content()

    note_id = request.args.get('id')
    if not note_id:
        return bad_request('The id of the note to delete is required.')

    try:
        note = db.session.get(Note, note_id)
        if note is None:
            return not_found('The note to delete could not be found.')

        db.session.delete(note)
        db.session.commit()
        current_app.logger.info(f"Deleted note {note_id}")
        return json_response(200, {'id': note_id})
    except Exception as e:
        return handle_error(e)


@bp.route('/notes-preview', methods=['GET', 'OPTIONS'], provide_automatic_options=False)
def preview_note():
    """Preview markdown content."""
    if request.method == 'OPTIONS':
        return no_content()

    note_id = request.args.get('id')
    if not note_id:
        return bad_request('The id of the note to preview is required.')

    try:
        note = db.session.get(Note, note_id)
        if note is None:
            return not_found('The requested note could not be found.')

        html = markdown.markdown(note.content or '', extensions=['fenced_code', 'tables'])
        return json_response(200, {'id': note.id, 'html': html})
    except Exception as e:
        return handle_error(e)
