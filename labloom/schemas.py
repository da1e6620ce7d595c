"""Request payload models for the notes handlers."""
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class TagPayload(BaseModel):
    id: str = Field(..., min_length=1)
    label: str = Field(..., min_length=1)


class AttachmentPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    size: int = Field(..., ge=0)
    type: str = Field(..., min_length=1)
    preview_url: Optional[str] = Field(default=None, alias='previewUrl', min_length=1)
    data_url: Optional[str] = Field(default=None, alias='dataUrl')

    @field_validator('preview_url')
    @classmethod
    def check_preview_url(cls, value):
        if value is None or value.startswith('data:'):
            return value
        if urlparse(value).scheme not in ('http', 'https'):
            raise ValueError('previewUrl must be an http(s) or data URL')
        return value

    @field_validator('data_url')
    @classmethod
    def check_data_url(cls, value):
        if value is not None and not value.startswith('data:'):
            raise ValueError('dataUrl must use the data: scheme')
        return value


class NotePayload(BaseModel):
    title: str
    content: str = ''
    category: str = ''
    tags: List[TagPayload] = Field(default_factory=list)
    attachments: List[AttachmentPayload] = Field(default_factory=list)

    @field_validator('title')
    @classmethod
    def title_required(cls, value):
        value = value.strip()
        if not value:
            raise ValueError('Title is required')
        return value

    @field_validator('category')
    @classmethod
    def strip_category(cls, value):
        return value.strip()


class NoteUpdatePayload(NotePayload):
    id: str = Field(..., min_length=1)


def format_validation_error(error: ValidationError) -> str:
    """Flatten pydantic errors into one line: 'title: Title is required, tags.0.id: ...'."""
    parts = []
    for item in error.errors():
        location = '.'.join(str(part) for part in item['loc'])
        message = item['msg'].removeprefix('Value error, ')
        parts.append(f'{location}: {message}' if location else message)
    return ', '.join(parts)
