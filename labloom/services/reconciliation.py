"""Reconciliation between the remote notes store and the local fallback store.

The controller owns the single in-memory notes collection shown to the user.
Every operation first tries the remote store while it is enabled; a transport
failure switches to local-only mode and applies the change to the local
mirror instead, so an edit is never lost. Not-found and validation answers
are reported without leaving remote mode.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from labloom.errors import (
    ControllerBusyError,
    NoteValidationError,
    RemoteNotFoundError,
    RemoteStoreError,
    RemoteTransportError,
)
from labloom.services.attachments import AttachmentIngestor
from labloom.services.ids import create_random_id
from labloom.services.local_store import DEFAULT_LIMIT, FileKeyValueStore, LocalNoteStore
from labloom.services.notes import (
    build_note_input,
    content_signature,
    filter_notes,
    list_categories,
    list_tags,
    snapshot_hash,
    sort_notes_by_updated_at,
    utc_now_iso,
)
from labloom.services.remote_store import RemoteNoteStore
from labloom.services.seed import seed_notes
from labloom.services.tags import format_tag_input, parse_tag_input

logger = logging.getLogger(__name__)


class SyncMode(str, Enum):
    LOCAL_ONLY = 'local-only'
    REMOTE_ACTIVE = 'remote-active'


class SyncStatus(str, Enum):
    REMOTE_CONNECTED = 'remote-connected'
    REMOTE_EMPTY = 'remote-empty'
    LOCAL_MODE = 'local-mode'
    REMOTE_UNREACHABLE = 'remote-unreachable'
    SAVED_LOCALLY = 'saved-locally'
    UPDATED_LOCALLY = 'updated-locally'
    DELETED_LOCALLY = 'deleted-locally'
    NOT_FOUND = 'not-found'
    REJECTED = 'rejected'
    INVALID_INPUT = 'invalid-input'


STATUS_MESSAGES = {
    SyncStatus.REMOTE_CONNECTED: 'Connected to the remote notes store.',
    SyncStatus.REMOTE_EMPTY: 'No notes saved yet. Create a new note to get started.',
    SyncStatus.LOCAL_MODE: 'Local data mode: the remote notes store is disabled.',
    SyncStatus.REMOTE_UNREACHABLE: 'Could not reach the remote notes store; switched to local data mode.',
    SyncStatus.SAVED_LOCALLY: 'Remote save failed; the note was added locally.',
    SyncStatus.UPDATED_LOCALLY: 'Remote update failed; the change was saved locally only.',
    SyncStatus.DELETED_LOCALLY: 'Remote delete failed; the note was removed locally.',
    SyncStatus.NOT_FOUND: 'The note could not be found in the remote store.',
    SyncStatus.REJECTED: 'The remote store rejected the note.',
    SyncStatus.INVALID_INPUT: 'Please enter a title.',
}

DEGRADED_STATUSES = {
    SyncStatus.REMOTE_UNREACHABLE,
    SyncStatus.SAVED_LOCALLY,
    SyncStatus.UPDATED_LOCALLY,
    SyncStatus.DELETED_LOCALLY,
}


class SyncIndicator(str, Enum):
    LOCAL_ONLY = 'local-only'
    SYNCING = 'syncing'
    DRIFT = 'drift'
    SYNCED = 'synced'
    CHECKING = 'checking'


@dataclass
class NoteDraft:
    title: str = ''
    content: str = ''
    category: str = ''
    tags_input: str = ''
    attachments: List = field(default_factory=list)
    editing_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def mode(self):
        return 'edit' if self.editing_id else 'create'


class NotesController:
    """Single source of truth for the notes the user sees."""

    def __init__(self, remote, local_store, prefer_remote=True, ingestor=None, seed=seed_notes):
        self.remote = remote
        self.local_store = local_store
        self.ingestor = ingestor or AttachmentIngestor()
        self._seed = seed

        self.mode = SyncMode.REMOTE_ACTIVE if prefer_remote and remote is not None else SyncMode.LOCAL_ONLY
        self.notes = []
        self.remote_hash = None
        self.local_hash = None
        self.status = SyncStatus.REMOTE_CONNECTED if self.remote_enabled else SyncStatus.LOCAL_MODE
        self.status_detail = None

        self.is_syncing = False
        self.is_saving = False
        self.is_deleting = False

        self.selected_id = None
        self.search = ''
        self.category = None
        self.tags = []
        self.draft = None

        self._provisional_ids = set()

    @classmethod
    def from_config(cls, config, remote=None, kv_store=None):
        """Wire a controller from a settings mapping (see labloom.config.load_config)."""
        if remote is None:
            remote = RemoteNoteStore(config.get('REMOTE_API_URL'), timeout=config.get('REMOTE_API_TIMEOUT'))
        if kv_store is None:
            kv_store = FileKeyValueStore(config.get('LOCAL_STORE_PATH'))
        local_store = LocalNoteStore(kv_store, limit=config.get('LOCAL_NOTES_LIMIT', DEFAULT_LIMIT))
        return cls(
            remote,
            local_store,
            prefer_remote=config.get('PREFER_REMOTE', True),
            ingestor=AttachmentIngestor.from_config(config),
        )

    # --- status -----------------------------------------------------------

    @property
    def remote_enabled(self):
        return self.mode == SyncMode.REMOTE_ACTIVE

    @property
    def busy(self):
        return self.is_saving or self.is_deleting

    @property
    def can_sync(self):
        """Drift between the last synced remote snapshot and the current collection."""
        return (
            self.remote_enabled
            and self.remote_hash is not None
            and self.local_hash is not None
            and self.remote_hash != self.local_hash
        )

    @property
    def is_remote_synced(self):
        return self.remote_enabled and self.remote_hash is not None and self.remote_hash == self.local_hash

    @property
    def is_degraded(self):
        return self.status in DEGRADED_STATUSES

    @property
    def status_message(self):
        message = STATUS_MESSAGES[self.status]
        if self.status_detail:
            return f'{message} ({self.status_detail})'
        return message

    @property
    def sync_indicator(self):
        if not self.remote_enabled:
            return SyncIndicator.LOCAL_ONLY
        if self.is_syncing:
            return SyncIndicator.SYNCING
        if self.can_sync:
            return SyncIndicator.DRIFT
        if self.is_remote_synced:
            return SyncIndicator.SYNCED
        return SyncIndicator.CHECKING

    def _report(self, status, detail=None):
        self.status = status
        self.status_detail = detail

    # --- view state -------------------------------------------------------

    @property
    def visible_notes(self):
        return filter_notes(self.notes, search=self.search, category=self.category, tags=self.tags)

    @property
    def selected_note(self):
        return next((note for note in self.visible_notes if note.id == self.selected_id), None)

    @property
    def categories(self):
        return list_categories(self.notes)

    @property
    def available_tags(self):
        return list_tags(self.notes)

    def get_note(self, note_id):
        return next((note for note in self.notes if note.id == note_id), None)

    def set_search(self, search):
        self.search = search or ''
        self._refresh_selection()

    def set_category(self, category):
        self.category = category or None
        self._refresh_selection()

    def toggle_tag(self, tag_id):
        if tag_id in self.tags:
            self.tags = [existing for existing in self.tags if existing != tag_id]
        else:
            self.tags = self.tags + [tag_id]
        self._refresh_selection()

    def clear_filters(self):
        self.search = ''
        self.category = None
        self.tags = []
        self._refresh_selection()

    def select(self, note_id):
        self.draft = None
        self.selected_id = note_id
        self._refresh_selection()

    def _refresh_selection(self):
        visible = self.visible_notes
        if not visible:
            self.selected_id = None
            return
        if self.selected_id is None:
            if self.draft is None:
                self.selected_id = visible[0].id
            return
        if not any(note.id == self.selected_id for note in visible):
            self.selected_id = None if self.draft is not None else visible[0].id

    def _set_notes(self, notes):
        """Replace the collection, mirror it locally and refresh the local fingerprint."""
        self.notes = sort_notes_by_updated_at(notes)
        self.local_store.save(self.notes)
        self.local_hash = snapshot_hash(self.notes)

    def _confirm_remote(self):
        self.remote_hash = self.local_hash

    def _switch_to_local(self, error):
        logger.warning(f"Remote notes store unavailable, switching to local mode: {error}")
        self.mode = SyncMode.LOCAL_ONLY

    def _ensure_idle(self):
        if self.busy:
            raise ControllerBusyError('Another save or delete is still in progress')

    # --- loading ----------------------------------------------------------

    def load(self, force_remote=False):
        """Fill the collection from the remote store, or from the local store in local mode."""
        if not (force_remote or self.remote_enabled) or self.remote is None:
            self._load_local(SyncStatus.LOCAL_MODE)
            return self.notes

        self.is_syncing = True
        try:
            remote_notes = self.remote.list_notes()
        except RemoteStoreError as e:
            self._switch_to_local(e)
            self.remote_hash = None
            self._load_local(SyncStatus.REMOTE_UNREACHABLE)
            return self.notes
        finally:
            self.is_syncing = False

        self.mode = SyncMode.REMOTE_ACTIVE
        self._provisional_ids.clear()
        self._set_notes(remote_notes)
        self._confirm_remote()
        self._report(SyncStatus.REMOTE_CONNECTED if self.notes else SyncStatus.REMOTE_EMPTY)
        self.selected_id = None
        self._refresh_selection()
        logger.info(f"Loaded {len(self.notes)} notes from the remote store")
        return self.notes

    def resync(self):
        """Manual resync: retry the remote store whatever the current mode."""
        if self.is_syncing:
            return self.notes
        return self.load(force_remote=True)

    def _load_local(self, status):
        stored = self.local_store.load()
        self._set_notes(stored if stored else self._seed())
        self._report(status)
        self.selected_id = None
        self._refresh_selection()

    # --- mutations --------------------------------------------------------

    def create_note(self, note_input):
        """Create a note; returns the stored note, or None if the remote store rejected it."""
        self._ensure_idle()
        self.is_saving = True
        try:
            now = utc_now_iso()
            provisional = note_input.to_note(create_random_id('note'), now, now)
            self._provisional_ids.add(provisional.id)
            self.notes = [provisional] + self.notes

            if not self.remote_enabled:
                self._provisional_ids.discard(provisional.id)
                self._set_notes(self.notes)
                self._report(SyncStatus.LOCAL_MODE)
                self._focus(provisional.id)
                return provisional

            try:
                confirmed = self.remote.create_note(note_input)
            except RemoteTransportError as e:
                self._switch_to_local(e)
                self._provisional_ids.discard(provisional.id)
                self._set_notes(self.notes)
                self._report(SyncStatus.SAVED_LOCALLY)
                self._focus(provisional.id)
                return provisional
            except RemoteStoreError as e:
                self._provisional_ids.discard(provisional.id)
                self.notes = [note for note in self.notes if note.id != provisional.id]
                self._report(SyncStatus.NOT_FOUND if isinstance(e, RemoteNotFoundError) else SyncStatus.REJECTED,
                             e.message)
                return None

            self._replace_provisional(provisional, confirmed)
            self._confirm_remote()
            self._report(SyncStatus.REMOTE_CONNECTED)
            self._focus(confirmed.id)
            return confirmed
        finally:
            self.is_saving = False

    def _replace_provisional(self, provisional, confirmed):
        signature = content_signature(confirmed)
        match = next(
            (note for note in self.notes
             if note.id in self._provisional_ids and content_signature(note) == signature),
            None,
        )
        replaced_id = match.id if match is not None else provisional.id
        self._provisional_ids.discard(replaced_id)
        remaining = [note for note in self.notes if note.id not in (replaced_id, confirmed.id)]
        self._set_notes([confirmed] + remaining)

    def update_note(self, note_id, note_input):
        """Full replace of a note; returns the stored note, or None when not found or rejected."""
        self._ensure_idle()
        self.is_saving = True
        try:
            existing = self.get_note(note_id)
            now = utc_now_iso()
            local_version = note_input.to_note(note_id, existing.created_at if existing else now, now)

            if not self.remote_enabled:
                self._upsert(local_version)
                self._report(SyncStatus.LOCAL_MODE)
                self._focus(note_id)
                return local_version

            try:
                confirmed = self.remote.update_note(note_id, note_input)
            except RemoteTransportError as e:
                self._switch_to_local(e)
                self._upsert(local_version)
                self._report(SyncStatus.UPDATED_LOCALLY)
                self._focus(note_id)
                return local_version
            except RemoteNotFoundError as e:
                self._report(SyncStatus.NOT_FOUND, e.message)
                return None
            except RemoteStoreError as e:
                self._report(SyncStatus.REJECTED, e.message)
                return None

            self._upsert(confirmed)
            self._confirm_remote()
            self._report(SyncStatus.REMOTE_CONNECTED)
            self._focus(confirmed.id)
            return confirmed
        finally:
            self.is_saving = False

    def _upsert(self, note):
        self._set_notes([note] + [existing for existing in self.notes if existing.id != note.id])

    def delete_note(self, note_id):
        """Delete a note; returns False when the remote store refused."""
        self._ensure_idle()
        self.is_deleting = True
        try:
            if self.remote_enabled:
                try:
                    self.remote.delete_note(note_id)
                except RemoteTransportError as e:
                    self._switch_to_local(e)
                    self._remove(note_id)
                    self._report(SyncStatus.DELETED_LOCALLY)
                    return True
                except RemoteNotFoundError as e:
                    self._report(SyncStatus.NOT_FOUND, e.message)
                    return False
                except RemoteStoreError as e:
                    self._report(SyncStatus.REJECTED, e.message)
                    return False

                self._remove(note_id)
                self._confirm_remote()
                self._report(SyncStatus.REMOTE_CONNECTED)
                return True

            self._remove(note_id)
            self._report(SyncStatus.LOCAL_MODE)
            return True
        finally:
            self.is_deleting = False

    def _remove(self, note_id):
        self._set_notes([note for note in self.notes if note.id != note_id])
        if self.draft is not None and self.draft.editing_id == note_id:
            self.draft = None
        if self.selected_id == note_id:
            self.selected_id = None
        self._refresh_selection()

    def _focus(self, note_id):
        self.selected_id = note_id
        self._refresh_selection()

    # --- compose ----------------------------------------------------------

    def start_new_draft(self):
        self.draft = NoteDraft()
        self.selected_id = None
        return self.draft

    def start_edit_draft(self, note_id=None):
        note = self.get_note(note_id or self.selected_id) if (note_id or self.selected_id) else None
        if note is None:
            return None
        self.draft = NoteDraft(
            title=note.title,
            content=note.content,
            category=note.category,
            tags_input=format_tag_input(note.tags),
            attachments=list(note.attachments),
            editing_id=note.id,
        )
        return self.draft

    def cancel_draft(self):
        self.draft = None
        self._refresh_selection()

    def add_attachments(self, files):
        """Run files through the ingestion pipeline into the open draft."""
        if self.draft is None:
            raise NoteValidationError('No draft is open')
        result = self.ingestor.ingest(files, self.draft.attachments)
        self.draft.attachments = result.attachments
        self.draft.error = result.error_message
        return result

    def remove_attachment(self, attachment_id):
        if self.draft is not None:
            self.draft.attachments = [
                attachment for attachment in self.draft.attachments if attachment.id != attachment_id
            ]

    def submit_draft(self):
        """Validate and save the open draft; the draft stays open when nothing was saved."""
        draft = self.draft
        if draft is None:
            return None
        try:
            note_input = build_note_input(
                draft.title,
                content=draft.content,
                category=draft.category,
                tags=parse_tag_input(draft.tags_input),
                attachments=draft.attachments,
            )
        except NoteValidationError as e:
            draft.error = str(e)
            self._report(SyncStatus.INVALID_INPUT)
            return None

        draft.error = None
        if draft.editing_id:
            saved = self.update_note(draft.editing_id, note_input)
        else:
            saved = self.create_note(note_input)

        if saved is None:
            draft.error = self.status_message
            return None
        self.draft = None
        self._focus(saved.id)
        return saved
