import uuid
from datetime import datetime, timezone

from labloom import db
from labloom.services.notes import format_timestamp


def _utcnow():
    return datetime.now(timezone.utc)


class Note(db.Model):
    __tablename__ = 'notes'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, default='')
    category = db.Column(db.String(100), default='', index=True)
    tags = db.Column(db.JSON, default=list)  # [{'id': ..., 'label': ...}]
    attachments = db.Column(db.JSON, default=list)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, index=True)

    @property
    def tag_ids(self):
        return {tag.get('id') for tag in (self.tags or []) if isinstance(tag, dict)}

    def apply_payload(self, payload):
        """Replace every editable field from a validated payload."""
        self.title = payload.title
        self.content = payload.content
        self.category = payload.category
        self.tags = [tag.model_dump() for tag in payload.tags]
        self.attachments = [attachment.model_dump(by_alias=True, exclude_none=True)
                            for attachment in payload.attachments]

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'content': self.content or '',
            'category': self.category or '',
            'tags': list(self.tags or []),
            'attachments': list(self.attachments or []),
            'createdAt': format_timestamp(self.created_at) if self.created_at else None,
            'updatedAt': format_timestamp(self.updated_at) if self.updated_at else None,
        }

    def __repr__(self):
        return f'<Note {self.title}>'
