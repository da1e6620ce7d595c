"""Byte-budget image encoding.

Images are re-encoded until their data URL fits a byte budget. Degradation
happens in a fixed order: JPEG quality first, then dimensions, then a switch
from PNG to JPEG for opaque images. The encoder always terminates and returns
its last candidate, even when that candidate is still over budget; callers
decide whether to accept it.
"""
import base64
import io
import logging
import math
from dataclasses import dataclass
from typing import Optional

from PIL import Image, UnidentifiedImageError

from labloom.errors import ImageEncodeError

logger = logging.getLogger(__name__)

LOSSY_TYPE = 'image/jpeg'
LOSSLESS_TYPE = 'image/png'

TRANSPARENCY_SAMPLE_SIZE = 64
OPAQUE_ALPHA_THRESHOLD = 250


def to_data_url(data, mime_type):
    encoded = base64.b64encode(data).decode('ascii')
    return f'data:{mime_type or "application/octet-stream"};base64,{encoded}'


def estimate_data_url_size(data_url):
    """Number of bytes a base64 data URL decodes to (0 if it has no payload)."""
    if not data_url:
        return 0
    comma = data_url.find(',')
    if comma == -1:
        return 0
    payload = data_url[comma + 1:]
    if payload.endswith('=='):
        padding = 2
    elif payload.endswith('='):
        padding = 1
    else:
        padding = 0
    return max(0, math.ceil(len(payload) * 3 / 4) - padding)


@dataclass(frozen=True)
class EncodeConstraints:
    max_width: int = 1200
    max_height: int = 1200
    min_width: Optional[int] = None
    quality: float = 0.78
    min_quality: float = 0.5
    max_quality: float = 0.92
    # LOSSLESS_TYPE makes opaque images start as PNG before falling back to JPEG
    preferred_format: Optional[str] = None
    max_attempts: int = 10
    dimension_step: float = 0.85

    @property
    def floor_width(self):
        return self.min_width if self.min_width is not None else min(640, self.max_width)

    @property
    def start_quality(self):
        return min(max(self.quality, self.min_quality), self.max_quality)


@dataclass(frozen=True)
class EncodedImage:
    data_url: str
    width: int
    height: int
    mime_type: str
    size: int
    reencoded: bool = True


def has_transparency(image):
    """Sample a small thumbnail and report whether any pixel is see-through."""
    if image.mode != 'RGBA':
        return False
    sample = image.resize((TRANSPARENCY_SAMPLE_SIZE, TRANSPARENCY_SAMPLE_SIZE))
    lowest, _ = sample.getchannel('A').getextrema()
    return lowest < OPAQUE_ALPHA_THRESHOLD


def _height_for(width, height, new_width):
    return max(1, int(height * new_width / width))


class PillowImageEncoder:
    """Image encoder backed by Pillow."""

    def decode(self, data):
        try:
            image = Image.open(io.BytesIO(data))
            image.load()
            if image.mode in ('RGB', 'RGBA'):
                return image
            if image.mode in ('LA', 'PA') or 'transparency' in image.info:
                return image.convert('RGBA')
            return image.convert('RGB')
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise ImageEncodeError(f'Cannot decode image: {e}') from e

    def encode(self, data, mime_type, target_bytes, constraints=None):
        if target_bytes <= 0:
            raise ValueError('target_bytes must be positive')
        constraints = constraints or EncodeConstraints()

        image = self.decode(data)
        width, height = image.size
        scale = min(constraints.max_width / width, constraints.max_height / height, 1)

        if scale >= 1 and len(data) <= target_bytes:
            original_type = mime_type or LOSSLESS_TYPE
            return EncodedImage(
                data_url=to_data_url(data, original_type),
                width=width,
                height=height,
                mime_type=original_type,
                size=len(data),
                reencoded=False,
            )

        transparent = has_transparency(image)
        if transparent or constraints.preferred_format == LOSSLESS_TYPE:
            output_type = LOSSLESS_TYPE
        else:
            output_type = LOSSY_TYPE
        quality = constraints.start_quality

        current_width = max(1, int(width * scale))
        current_height = _height_for(width, height, current_width)
        # never grow past the bounded size to honour the width floor
        floor_width = min(constraints.floor_width, current_width)

        candidate = None
        for attempt in range(constraints.max_attempts):
            candidate = self._render(image, current_width, current_height, output_type, quality)
            logger.debug(
                f"Encode attempt {attempt + 1}: {current_width}x{current_height} "
                f"{output_type} q={quality:.2f} -> {candidate.size} bytes (target {target_bytes})"
            )
            if candidate.size <= target_bytes:
                break

            if output_type == LOSSY_TYPE and quality > constraints.min_quality + 0.05:
                quality = max(constraints.min_quality, round(quality - 0.1, 2))
                continue

            if current_width > floor_width:
                current_width = max(floor_width, int(current_width * constraints.dimension_step))
                current_height = _height_for(width, height, current_width)
                continue

            if output_type == LOSSLESS_TYPE and not transparent:
                output_type = LOSSY_TYPE
                quality = constraints.start_quality
                continue

            break

        return candidate

    def _render(self, image, width, height, mime_type, quality):
        frame = image
        buffer = io.BytesIO()
        try:
            if frame.size != (width, height):
                frame = frame.resize((width, height), Image.Resampling.LANCZOS)
            if mime_type == LOSSY_TYPE:
                if frame.mode != 'RGB':
                    frame = frame.convert('RGB')
                frame.save(buffer, format='JPEG', quality=int(round(quality * 100)), optimize=True)
            else:
                frame.save(buffer, format='PNG', optimize=True)
        except (OSError, ValueError) as e:
            raise ImageEncodeError(f'Cannot encode image as {mime_type}: {e}') from e

        data_url = to_data_url(buffer.getvalue(), mime_type)
        return EncodedImage(
            data_url=data_url,
            width=width,
            height=height,
            mime_type=mime_type,
            size=estimate_data_url_size(data_url),
        )


def encode_image(data, mime_type, target_bytes, constraints=None):
    return PillowImageEncoder().encode(data, mime_type, target_bytes, constraints)
