"""HTTP client for the remote notes handlers (see labloom.routes.notes)."""
import logging

import requests

from labloom.errors import (
    NoteValidationError,
    RemoteNotFoundError,
    RemoteTransportError,
    RemoteValidationError,
)
from labloom.services.notes import normalize_note, sort_notes_by_updated_at

logger = logging.getLogger(__name__)


def _error_message(response):
    try:
        body = response.json()
    except ValueError:
        return response.text or f'HTTP {response.status_code}'
    if isinstance(body, dict) and body.get('message'):
        return str(body['message'])
    return response.text or f'HTTP {response.status_code}'


class RemoteNoteStore:
    """Remote store collaborator of the reconciliation controller.

    Transport problems (connection errors, unexpected status codes, bodies
    that are not JSON or not notes) raise RemoteTransportError. Application
    problems raise RemoteNotFoundError (404) or RemoteValidationError
    (400/422) so the caller can keep the remote mode enabled.
    """

    def __init__(self, base_url, timeout=None, session=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method, endpoint, params=None, payload=None):
        url = f'{self.base_url}/{endpoint}'
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=payload,
                headers={'Accept': 'application/json'},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteTransportError(f'{method} {endpoint} failed: {e}') from e

        status = response.status_code
        if status == 404:
            raise RemoteNotFoundError(_error_message(response), status)
        if status in (400, 422):
            raise RemoteValidationError(_error_message(response), status)
        if not 200 <= status < 300:
            raise RemoteTransportError(f'{method} {endpoint} returned HTTP {status}: {_error_message(response)}', status)
        if status == 204:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise RemoteTransportError(f'{method} {endpoint} returned a non-JSON body', status) from e

    def _to_note(self, raw, endpoint):
        try:
            return normalize_note(raw)
        except NoteValidationError as e:
            raise RemoteTransportError(f'{endpoint} returned a malformed note: {e}') from e

    def list_notes(self, search=None, category=None, tags=None):
        params = {}
        if search:
            params['search'] = search
        if category:
            params['category'] = category
        if tags:
            params['tags'] = ','.join(tags)

        body = self._request('GET', 'notes-read', params=params or None)
        if not isinstance(body, list):
            raise RemoteTransportError('notes-read did not return a list')
        notes = [self._to_note(item, 'notes-read') for item in body]
        logger.debug(f"Fetched {len(notes)} notes from {self.base_url}")
        return sort_notes_by_updated_at(notes)

    def get_note(self, note_id):
        return self._to_note(self._request('GET', 'notes-read', params={'id': note_id}), 'notes-read')

    def create_note(self, note_input):
        body = self._request('POST', 'notes-create', payload=note_input.to_payload())
        return self._to_note(body, 'notes-create')

    def update_note(self, note_id, note_input):
        payload = dict(note_input.to_payload(), id=note_id)
        body = self._request('PUT', 'notes-update', payload=payload)
        return self._to_note(body, 'notes-update')

    def delete_note(self, note_id):
        body = self._request('DELETE', 'notes-delete', params={'id': note_id})
        if not isinstance(body, dict) or 'id' not in body:
            raise RemoteTransportError('notes-delete returned a malformed body')
        return {'id': str(body['id'])}
