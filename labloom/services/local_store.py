import json
import logging
import os
import re

from labloom.errors import NoteValidationError, StorageError, StorageQuotaExceeded
from labloom.services.notes import normalize_note, sort_notes_by_updated_at

logger = logging.getLogger(__name__)

STORAGE_KEY = 'labloom.localNotes'
DEFAULT_LIMIT = 10

_UNSAFE_KEY_CHARS = re.compile(r'[^A-Za-z0-9._-]')


class MemoryKeyValueStore:
    """Process-memory key-value store with an optional total capacity in bytes."""

    def __init__(self, capacity=None):
        self.capacity = capacity
        self._data = {}

    def get(self, key):
        return self._data.get(key)

    def set(self, key, value):
        if self.capacity is not None:
            used = sum(len(v.encode('utf-8')) for k, v in self._data.items() if k != key)
            if used + len(value.encode('utf-8')) > self.capacity:
                raise StorageQuotaExceeded(f'Storing {key!r} would exceed {self.capacity} bytes')
        self._data[key] = value

    def delete(self, key):
        self._data.pop(key, None)


class FileKeyValueStore:
    """Key-value store keeping one file per key under a base directory."""

    def __init__(self, base_path, capacity=None):
        self.base_path = os.path.expanduser(base_path)
        self.capacity = capacity

    def _ensure_dir(self, path):
        """Ensure directory exists."""
        os.makedirs(path, exist_ok=True)

    def _path_for(self, key):
        filename = _UNSAFE_KEY_CHARS.sub('_', key) + '.json'
        return os.path.join(self.base_path, filename)

    def get(self, key):
        file_path = self._path_for(key)
        if not os.path.exists(file_path):
            return None
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f'Cannot read {file_path}: {e}') from e

    def set(self, key, value):
        encoded = value.encode('utf-8')
        if self.capacity is not None and len(encoded) > self.capacity:
            raise StorageQuotaExceeded(f'Storing {key!r} would exceed {self.capacity} bytes')

        file_path = self._path_for(key)
        tmp_path = file_path + '.tmp'
        try:
            self._ensure_dir(self.base_path)
            with open(tmp_path, 'wb') as f:
                f.write(encoded)
            os.replace(tmp_path, file_path)
        except OSError as e:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError(f'Cannot write {file_path}: {e}') from e

    def delete(self, key):
        file_path = self._path_for(key)
        if os.path.exists(file_path):
            os.remove(file_path)


def _storage_dict(note, strip_payloads=False):
    data = note.to_dict()
    attachments = []
    for attachment in data['attachments']:
        item = dict(attachment)
        if item.get('previewUrl') and item.get('previewUrl') == item.get('dataUrl'):
            # rebuilt from dataUrl on load
            item.pop('previewUrl')
        if strip_payloads:
            item.pop('dataUrl', None)
            if str(item.get('previewUrl', '')).startswith('data:'):
                item.pop('previewUrl')
        attachments.append(item)
    data['attachments'] = attachments
    return data


class LocalNoteStore:
    """Capacity-bounded local mirror of the notes collection.

    Only the ``limit`` most recently updated notes are kept. Reads and writes
    never raise: a broken payload loads as an empty collection and a failed
    write is logged and dropped.
    """

    def __init__(self, kv_store, key=STORAGE_KEY, limit=DEFAULT_LIMIT):
        self.kv_store = kv_store
        self.key = key
        self.limit = limit

    def retained(self, notes):
        return sort_notes_by_updated_at(notes)[:self.limit]

    def load(self):
        try:
            raw = self.kv_store.get(self.key)
        except StorageError as e:
            logger.warning(f"Could not read local notes: {e}")
            return []
        if not raw:
            return []

        try:
            parsed = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Local notes payload is not valid JSON: {e}")
            return []
        if not isinstance(parsed, list):
            return []

        notes = []
        for item in parsed:
            if not isinstance(item, dict):
                continue
            try:
                notes.append(normalize_note(item))
            except NoteValidationError as e:
                logger.debug(f"Dropping malformed local note: {e}")
        return notes

    def save(self, notes):
        kept = self.retained(notes)
        try:
            self._write(kept)
            return
        except StorageQuotaExceeded as e:
            logger.warning(f"Local storage is full ({e}); retrying without embedded attachments")
        except StorageError as e:
            logger.warning(f"Could not save local notes: {e}")
            return

        try:
            self._write(kept, strip_payloads=True)
        except StorageError as e:
            logger.warning(f"Could not save local notes after retry: {e}")

    def _write(self, notes, strip_payloads=False):
        payload = json.dumps([_storage_dict(note, strip_payloads) for note in notes], ensure_ascii=False)
        self.kv_store.set(self.key, payload)

    def clear(self):
        self.kv_store.delete(self.key)
