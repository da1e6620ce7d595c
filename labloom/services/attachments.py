"""Attachment ingestion.

Files are processed one at a time because they share a single remaining
byte budget: every accepted attachment shrinks the budget available to the
files after it. Images go through the byte-budget encoder, everything else is
inlined as a data URL untouched.
"""
import logging
import math
import mimetypes
import os
from dataclasses import dataclass, field
from typing import List, Optional

from labloom.errors import ImageEncodeError
from labloom.services.ids import create_random_id
from labloom.services.images import EncodeConstraints, PillowImageEncoder, estimate_data_url_size, to_data_url
from labloom.services.notes import (
    DEFAULT_ATTACHMENT_NAME,
    DEFAULT_ATTACHMENT_TYPE,
    Attachment,
    attachment_signatures,
    dedupe_attachments,
    total_attachment_size,
)

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_SIZE = 10 * 1024 * 1024
DEFAULT_ATTACHMENT_BUDGET = 8 * 1024 * 1024
MIN_CHUNK = 200 * 1024
DEFAULT_IMAGE_TARGET = int(1.5 * 1024 * 1024)
RETRY_TARGET_RATIO = 0.75

COMPOSE_CONSTRAINTS = EncodeConstraints(max_width=1600, max_height=1600, quality=0.82)
RETRY_CONSTRAINTS = EncodeConstraints(max_width=1280, max_height=1280, quality=0.7, max_quality=0.7)

# rendered as markup by browsers, not decodable as a bitmap
NON_RASTER_IMAGE_TYPES = {'image/svg+xml'}


def format_bytes(num_bytes):
    """Human readable size: 0 B, 512 B, 1.50 KB, 10.00 MB."""
    if isinstance(num_bytes, bool) or not isinstance(num_bytes, (int, float)):
        return '0 B'
    if not math.isfinite(num_bytes) or num_bytes <= 0:
        return '0 B'
    units = ['B', 'KB', 'MB', 'GB']
    value = float(num_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    if index == 0:
        return f'{round(value)} B'
    return f'{value:.2f} {units[index]}'


class SourceFile:
    """A user supplied file. Its content is only read when it is processed."""

    def __init__(self, name, type, size, reader):
        self.name = name
        self.type = type or DEFAULT_ATTACHMENT_TYPE
        self.size = size
        self._reader = reader

    @classmethod
    def from_bytes(cls, name, data, type=None):
        mime_type = type or mimetypes.guess_type(name)[0]
        return cls(name, mime_type, len(data), lambda: data)

    @classmethod
    def from_path(cls, path, type=None):
        def reader():
            with open(path, 'rb') as f:
                return f.read()

        mime_type = type or mimetypes.guess_type(path)[0]
        return cls(os.path.basename(path), mime_type, os.path.getsize(path), reader)

    @property
    def is_raster_image(self):
        return self.type.startswith('image/') and self.type not in NON_RASTER_IMAGE_TYPES

    def read(self):
        return self._reader()

    def __repr__(self):
        return f'<SourceFile {self.name} {self.type} {self.size}>'


@dataclass
class IngestResult:
    accepted: List[Attachment] = field(default_factory=list)
    # existing attachments followed by the accepted ones, deduplicated
    attachments: List[Attachment] = field(default_factory=list)
    skipped_count: int = 0
    error_message: Optional[str] = None
    is_partial: bool = False
    remaining_budget: int = 0


class AttachmentIngestor:

    def __init__(self, encoder=None, total_budget=DEFAULT_ATTACHMENT_BUDGET, max_file_size=MAX_ATTACHMENT_SIZE,
                 min_chunk=MIN_CHUNK, image_target=DEFAULT_IMAGE_TARGET):
        self.encoder = encoder or PillowImageEncoder()
        self.total_budget = total_budget
        self.max_file_size = max_file_size
        self.min_chunk = min_chunk
        self.image_target = image_target

    @classmethod
    def from_config(cls, config, encoder=None):
        return cls(
            encoder=encoder,
            total_budget=config.get('ATTACHMENT_BUDGET', DEFAULT_ATTACHMENT_BUDGET),
            max_file_size=config.get('MAX_ATTACHMENT_SIZE', MAX_ATTACHMENT_SIZE),
            min_chunk=config.get('ATTACHMENT_MIN_CHUNK', MIN_CHUNK),
            image_target=config.get('IMAGE_TARGET_BYTES', DEFAULT_IMAGE_TARGET),
        )

    def ingest(self, files, existing=()):
        files = list(files)
        existing = list(existing)
        remaining = self.total_budget - total_attachment_size(existing)

        if not files:
            return IngestResult(attachments=existing, remaining_budget=remaining)

        if remaining <= self.min_chunk:
            return IngestResult(
                attachments=existing,
                skipped_count=len(files),
                error_message='Not enough attachment space left. Remove an attachment to clear space.',
                remaining_budget=remaining,
            )

        oversized = [source for source in files if source.size > self.max_file_size]
        allowed = [source for source in files if source.size <= self.max_file_size]

        accepted = []
        seen = set()
        for attachment in existing:
            seen.update(attachment_signatures(attachment))
        over_budget = 0
        failed = 0
        for index, source in enumerate(allowed):
            files_left = len(allowed) - index
            try:
                attachment = self._ingest_one(source, remaining, files_left)
            except (ImageEncodeError, OSError) as e:
                logger.warning(f"Skipping attachment {source.name}: {e}")
                failed += 1
                continue

            if attachment is None:
                logger.info(f"Skipping attachment {source.name}: does not fit in {remaining} bytes")
                over_budget += 1
                continue

            signatures = attachment_signatures(attachment)
            if any(signature in seen for signature in signatures):
                # already attached, costs nothing
                logger.debug(f"Skipping duplicate attachment {source.name}")
                continue
            if attachment.size > remaining:
                logger.info(f"Skipping attachment {source.name}: does not fit in {remaining} bytes")
                over_budget += 1
                continue
            seen.update(signatures)

            accepted.append(attachment)
            remaining -= attachment.size
            if remaining <= self.min_chunk:
                logger.info(f"Attachment budget exhausted after {source.name}; stopping")
                break

        merged = dedupe_attachments(existing, accepted)

        skipped = len(oversized) + over_budget + failed
        messages = []
        if oversized:
            messages.append(f'Each attachment can be at most {format_bytes(self.max_file_size)}.')
        if accepted and over_budget:
            messages.append(f'{over_budget} attachment(s) exceeded the remaining space and were skipped.')
        elif over_budget:
            messages.append(
                f'Attachments exceeded the available space ({format_bytes(self.total_budget)} per note).'
            )
        if failed:
            messages.append(f'{failed} file(s) could not be processed.')

        return IngestResult(
            accepted=accepted,
            attachments=merged,
            skipped_count=skipped,
            error_message=' '.join(messages) or None,
            is_partial=bool(accepted) and skipped > 0,
            remaining_budget=remaining,
        )

    def _ingest_one(self, source, remaining, files_left):
        data = source.read()
        name = source.name or DEFAULT_ATTACHMENT_NAME

        if source.is_raster_image:
            encoded = self._encode_within(data, source.type, remaining, files_left)
            if encoded is None:
                return None
            return Attachment(
                id=create_random_id('att'),
                name=name,
                size=encoded.size,
                type=encoded.mime_type,
                preview_url=encoded.data_url,
                data_url=encoded.data_url,
            )

        data_url = to_data_url(data, source.type)
        size = estimate_data_url_size(data_url) or source.size
        return Attachment(
            id=create_random_id('att'),
            name=name,
            size=size,
            type=source.type,
            preview_url=data_url,
            data_url=data_url,
        )

    def _encode_within(self, data, mime_type, remaining, files_left):
        target = max(self.min_chunk, min(self.image_target, remaining // files_left))
        target = min(target, remaining)

        encoded = self.encoder.encode(data, mime_type, target, COMPOSE_CONSTRAINTS)
        if encoded.size <= remaining:
            return encoded

        retry_target = max(1, int(target * RETRY_TARGET_RATIO))
        encoded = self.encoder.encode(data, mime_type, retry_target, RETRY_CONSTRAINTS)
        if encoded.size <= remaining:
            return encoded
        return None
