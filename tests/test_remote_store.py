import pytest
import requests

from conftest import REMOTE_URL, CannedSession
from labloom.errors import RemoteNotFoundError, RemoteTransportError, RemoteValidationError
from labloom.services.notes import NoteInput, build_note_input
from labloom.services.remote_store import RemoteNoteStore
from labloom.services.tags import parse_tag_input


class BrokenSession:
    def request(self, method, url, **kwargs):
        raise requests.ConnectionError('connection refused')


def test_create_then_list(remote):
    created = remote.create_note(build_note_input('First', content='body', tags=parse_tag_input('UX, Mobile')))

    notes = remote.list_notes()

    assert [note.id for note in notes] == [created.id]
    assert notes[0].title == 'First'
    assert [tag.id for tag in notes[0].tags] == ['ux', 'mobile']


def test_list_passes_filters(remote, remote_session):
    remote.list_notes(search='abc', category='backend', tags=['postgres', 'schema'])

    method, url, params = remote_session.calls[-1]
    assert method == 'GET'
    assert url == f'{REMOTE_URL}/notes-read'
    assert params == {'search': 'abc', 'category': 'backend', 'tags': 'postgres,schema'}


def test_get_note(remote):
    created = remote.create_note(build_note_input('Lookup'))

    assert remote.get_note(created.id).title == 'Lookup'


def test_update_note(remote):
    created = remote.create_note(build_note_input('Before'))

    updated = remote.update_note(created.id, build_note_input('After'))

    assert updated.id == created.id
    assert updated.title == 'After'


def test_update_missing_note_raises_not_found(remote):
    with pytest.raises(RemoteNotFoundError) as excinfo:
        remote.update_note('missing', build_note_input('Ghost'))

    assert excinfo.value.status_code == 404


def test_delete_note(remote):
    created = remote.create_note(build_note_input('Doomed'))

    assert remote.delete_note(created.id) == {'id': created.id}
    assert remote.list_notes() == []


def test_delete_missing_note_raises_not_found(remote):
    with pytest.raises(RemoteNotFoundError):
        remote.delete_note('missing')


def test_validation_error_is_application_level(remote):
    with pytest.raises(RemoteValidationError) as excinfo:
        remote.create_note(NoteInput(title=''))

    assert excinfo.value.status_code == 400


def test_connection_error_is_transport_level():
    remote = RemoteNoteStore(REMOTE_URL, session=BrokenSession())

    with pytest.raises(RemoteTransportError):
        remote.list_notes()


def test_server_error_is_transport_level():
    remote = RemoteNoteStore(REMOTE_URL, session=CannedSession(500, '{"error": "INTERNAL_SERVER_ERROR"}'))

    with pytest.raises(RemoteTransportError) as excinfo:
        remote.list_notes()

    assert excinfo.value.status_code == 500


def test_non_json_body_is_transport_level():
    remote = RemoteNoteStore(REMOTE_URL, session=CannedSession(200, '<html>proxy error</html>'))

    with pytest.raises(RemoteTransportError):
        remote.list_notes()


def test_malformed_note_is_transport_level():
    remote = RemoteNoteStore(REMOTE_URL, session=CannedSession(200, '[{"id": "1"}]'))

    with pytest.raises(RemoteTransportError):
        remote.list_notes()
