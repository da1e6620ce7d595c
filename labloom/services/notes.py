"""Note value objects and the helpers that operate on collections of them.

Every loosely shaped input (server payloads, locally stored JSON, drafts)
goes through ``normalize_note`` / ``normalize_attachment`` so that the rest
of the code can rely on fully populated objects.
"""
import hashlib
import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from labloom.errors import NoteValidationError
from labloom.services.ids import create_random_id
from labloom.services.images import estimate_data_url_size
from labloom.services.tags import Tag, normalize_tags

DEFAULT_ATTACHMENT_NAME = 'attachment'
DEFAULT_ATTACHMENT_TYPE = 'application/octet-stream'
EMPTY_SNAPSHOT = 'empty'

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def format_timestamp(value):
    """ISO-8601 in UTC with millisecond precision, e.g. 2024-01-15T10:30:00.000Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def utc_now_iso():
    return format_timestamp(datetime.now(timezone.utc))


def parse_timestamp(value):
    """Parse an ISO timestamp to an aware datetime, None if it is not one."""
    if not value or not isinstance(value, str):
        return None
    try:
        # Handle format: 2024-01-15T10:30:00.000Z
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Attachment:
    id: str
    name: str
    size: int
    type: str
    preview_url: Optional[str] = None
    data_url: Optional[str] = None

    @property
    def is_image(self):
        return self.type.startswith('image/')

    def to_dict(self):
        data = {'id': self.id, 'name': self.name, 'size': self.size, 'type': self.type}
        if self.preview_url:
            data['previewUrl'] = self.preview_url
        if self.data_url:
            data['dataUrl'] = self.data_url
        return data


@dataclass(frozen=True)
class Note:
    id: str
    title: str
    content: str = ''
    category: str = ''
    tags: Tuple[Tag, ...] = ()
    attachments: Tuple[Attachment, ...] = ()
    created_at: str = ''
    updated_at: str = ''

    @property
    def tag_ids(self):
        return {tag.id for tag in self.tags}

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content,
            'category': self.category,
            'tags': [tag.to_dict() for tag in self.tags],
            'attachments': [attachment.to_dict() for attachment in self.attachments],
            'createdAt': self.created_at,
            'updatedAt': self.updated_at,
        }


@dataclass(frozen=True)
class NoteInput:
    """Payload for create/update: everything but the id and timestamps."""
    title: str
    content: str = ''
    category: str = ''
    tags: Tuple[Tag, ...] = ()
    attachments: Tuple[Attachment, ...] = ()

    def to_payload(self):
        return {
            'title': self.title,
            'content': self.content,
            'category': self.category,
            'tags': [tag.to_dict() for tag in self.tags],
            'attachments': [attachment.to_dict() for attachment in self.attachments],
        }

    def to_note(self, note_id, created_at, updated_at):
        return Note(
            id=note_id,
            title=self.title,
            content=self.content,
            category=self.category,
            tags=self.tags,
            attachments=self.attachments,
            created_at=created_at,
            updated_at=updated_at,
        )


def _pick(raw, *keys):
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _clean_str(value):
    return value.strip() if isinstance(value, str) else ''


def normalize_attachment(raw):
    """Fill every attachment field with a documented default."""
    if isinstance(raw, Attachment):
        raw = raw.to_dict()
    if not isinstance(raw, dict):
        raise NoteValidationError('Attachment must be an object')

    preview_url = _clean_str(_pick(raw, 'previewUrl', 'preview_url')) or None
    data_url = _clean_str(_pick(raw, 'dataUrl', 'data_url')) or None
    if data_url and not data_url.startswith('data:'):
        data_url = None
    if not data_url and preview_url and preview_url.startswith('data:'):
        data_url = preview_url
    if data_url and (not preview_url or preview_url.startswith('data:')):
        # a data URL preview must show the same content as dataUrl
        preview_url = data_url

    size = raw.get('size')
    if isinstance(size, bool) or not isinstance(size, (int, float)) or not math.isfinite(size):
        size = estimate_data_url_size(data_url) if data_url else 0
    size = max(0, int(size))

    return Attachment(
        id=_clean_str(raw.get('id')) or create_random_id('att'),
        name=_clean_str(raw.get('name')) or DEFAULT_ATTACHMENT_NAME,
        size=size,
        type=_clean_str(raw.get('type')) or DEFAULT_ATTACHMENT_TYPE,
        preview_url=preview_url,
        data_url=data_url,
    )


def normalize_note(raw):
    """Build a Note from a loosely shaped mapping.

    Raises NoteValidationError when the id or the title is missing; an empty
    title is never replaced by a default.
    """
    if isinstance(raw, Note):
        raw = raw.to_dict()
    if not isinstance(raw, dict):
        raise NoteValidationError('Note must be an object')

    note_id = raw.get('id')
    if isinstance(note_id, int) and not isinstance(note_id, bool):
        note_id = str(note_id)
    note_id = _clean_str(note_id)
    if not note_id:
        raise NoteValidationError('Note id is required')

    title = _clean_str(raw.get('title'))
    if not title:
        raise NoteValidationError('Title is required')

    content = raw.get('content')
    category = raw.get('category')

    attachments = raw.get('attachments')
    if not isinstance(attachments, (list, tuple)):
        attachments = ()

    created = parse_timestamp(_pick(raw, 'createdAt', 'created_at'))
    updated = parse_timestamp(_pick(raw, 'updatedAt', 'updated_at'))
    if created is None:
        created = updated or datetime.now(timezone.utc)
    if updated is None or updated < created:
        updated = created

    return Note(
        id=note_id,
        title=title,
        content=content if isinstance(content, str) else '',
        category=_clean_str(category),
        tags=normalize_tags(raw.get('tags')),
        attachments=tuple(normalize_attachment(item) for item in attachments if isinstance(item, (dict, Attachment))),
        created_at=format_timestamp(created),
        updated_at=format_timestamp(updated),
    )


def build_note_input(title, content='', category='', tags=(), attachments=()):
    title = _clean_str(title)
    if not title:
        raise NoteValidationError('Please enter a title.')
    return NoteInput(
        title=title,
        content=content or '',
        category=_clean_str(category),
        tags=normalize_tags(list(tags)),
        attachments=tuple(normalize_attachment(item) for item in attachments),
    )


def recency_key(note):
    return parse_timestamp(note.updated_at) or parse_timestamp(note.created_at) or _EPOCH


def sort_notes_by_updated_at(notes):
    """Most recently updated first; stable for equal timestamps."""
    return sorted(notes, key=recency_key, reverse=True)


def filter_notes(notes, search='', category=None, tags=()):
    """Client-side filter: substring search over title, content and tag labels,
    exact category, and every requested tag id present."""
    query = (search or '').strip().lower()
    wanted = [tag for tag in (tags or ()) if tag]
    result = []
    for note in notes:
        if category and note.category != category:
            continue
        if wanted and not all(tag_id in note.tag_ids for tag_id in wanted):
            continue
        if query:
            searchable = ' '.join([note.title, note.content] + [tag.label for tag in note.tags]).lower()
            if query not in searchable:
                continue
        result.append(note)
    return result


def list_categories(notes):
    """Distinct non-empty categories with their note counts, sorted by name."""
    counts = {}
    for note in notes:
        if note.category:
            counts[note.category] = counts.get(note.category, 0) + 1
    return sorted(counts.items())


def list_tags(notes):
    """Distinct tags across notes, first label seen wins, sorted by label."""
    seen = {}
    for note in notes:
        for tag in note.tags:
            seen.setdefault(tag.id, tag)
    return sorted(seen.values(), key=lambda tag: tag.label.lower())


def attachment_signatures(attachment):
    candidates = [attachment.data_url, attachment.preview_url, attachment.id, f'{attachment.name}-{attachment.size}']
    return [candidate for candidate in candidates if candidate]


def dedupe_attachments(existing, incoming):
    """Merge two attachment lists; existing first, then unseen incoming.

    Two attachments are duplicates when they share a dataUrl, a previewUrl, an
    id, or a name and size pair. The first one seen wins.
    """
    result = []
    seen = set()
    for attachment in list(existing) + list(incoming):
        signatures = attachment_signatures(attachment)
        if any(signature in seen for signature in signatures):
            continue
        seen.update(signatures)
        result.append(attachment)
    return result


def total_attachment_size(attachments):
    return sum(attachment.size for attachment in attachments)


def content_signature(item):
    """Fields a confirmed record must share with its provisional counterpart."""
    return (
        item.title,
        item.content,
        item.category,
        tuple(sorted(tag.id for tag in item.tags)),
        tuple((attachment.name, attachment.size, attachment.type) for attachment in item.attachments),
    )


def snapshot_hash(notes):
    """Opaque fingerprint of a collection; the empty collection is 'empty'."""
    if not notes:
        return EMPTY_SNAPSHOT
    payload = json.dumps([note.to_dict() for note in notes], sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()
