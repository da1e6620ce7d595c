import base64
import io

import pytest
from PIL import Image

from labloom.errors import ImageEncodeError
from labloom.services.attachments import AttachmentIngestor, SourceFile
from labloom.services.images import (
    LOSSLESS_TYPE,
    LOSSY_TYPE,
    EncodeConstraints,
    PillowImageEncoder,
    estimate_data_url_size,
    to_data_url,
)


def image_bytes(width, height, mode='RGB', format='PNG', noise=False, color=(40, 120, 200)):
    if noise:
        image = Image.effect_noise((width, height), 80).convert(mode)
    else:
        fill = color if mode == 'RGB' else color + (0,)
        image = Image.new(mode, (width, height), fill)
    buffer = io.BytesIO()
    image.save(buffer, format=format)
    return buffer.getvalue()


def decoded_size(encoded):
    payload = encoded.data_url.split(',', 1)[1]
    return Image.open(io.BytesIO(base64.b64decode(payload))).size


@pytest.fixture
def encoder():
    return PillowImageEncoder()


def test_estimate_data_url_size():
    assert estimate_data_url_size(to_data_url(b'hello', 'text/plain')) == 5
    assert estimate_data_url_size(to_data_url(b'hi', 'text/plain')) == 2
    assert estimate_data_url_size(to_data_url(b'abc', 'text/plain')) == 3
    assert estimate_data_url_size('') == 0
    assert estimate_data_url_size('not a data url') == 0


def test_small_image_is_returned_unchanged(encoder):
    data = image_bytes(100, 80)

    result = encoder.encode(data, 'image/png', target_bytes=100_000)

    assert result.reencoded is False
    assert result.data_url == to_data_url(data, 'image/png')
    assert result.size == len(data)
    assert (result.width, result.height) == (100, 80)


def test_large_image_is_bounded_and_keeps_aspect_ratio(encoder):
    data = image_bytes(2400, 1200, noise=True)

    result = encoder.encode(data, 'image/png', target_bytes=400_000)

    assert result.reencoded is True
    assert result.mime_type == LOSSY_TYPE
    assert result.width <= 1200
    assert result.height == result.width // 2
    assert decoded_size(result) == (result.width, result.height)


def test_smooth_image_meets_target(encoder):
    data = image_bytes(3000, 2000, color=(200, 200, 200))

    result = encoder.encode(data, 'image/png', target_bytes=50_000)

    assert result.size <= 50_000
    assert result.size == estimate_data_url_size(result.data_url)


def test_transparent_image_stays_lossless(encoder):
    data = image_bytes(1600, 1600, mode='RGBA')

    result = encoder.encode(data, 'image/png', target_bytes=10_000)

    assert result.mime_type == LOSSLESS_TYPE
    assert result.data_url.startswith('data:image/png;base64,')


def test_opaque_lossless_switches_to_jpeg_when_over_budget(encoder):
    data = image_bytes(700, 700, noise=True)
    constraints = EncodeConstraints(preferred_format=LOSSLESS_TYPE)

    result = encoder.encode(data, 'image/png', target_bytes=1_000, constraints=constraints)

    assert result.mime_type == LOSSY_TYPE


def test_impossible_target_still_terminates(encoder):
    data = image_bytes(1500, 1500, noise=True)
    constraints = EncodeConstraints(max_attempts=3)

    result = encoder.encode(data, 'image/jpeg', target_bytes=10, constraints=constraints)

    assert result.size > 10
    assert result.width >= 640


def test_width_floor_is_respected(encoder):
    data = image_bytes(1200, 600, noise=True)
    constraints = EncodeConstraints(min_width=800)

    result = encoder.encode(data, 'image/png', target_bytes=10, constraints=constraints)

    assert result.width == 800


def test_invalid_image_raises(encoder):
    with pytest.raises(ImageEncodeError):
        encoder.encode(b'definitely not an image', 'image/png', target_bytes=1_000)


def test_target_must_be_positive(encoder):
    with pytest.raises(ValueError):
        encoder.encode(image_bytes(10, 10), 'image/png', target_bytes=0)


def test_render_failure_raises_encode_error(encoder, monkeypatch):
    data = image_bytes(1600, 800)

    def broken_save(self, *args, **kwargs):
        raise ValueError('encoder unavailable')

    monkeypatch.setattr(Image.Image, 'save', broken_save)

    with pytest.raises(ImageEncodeError):
        encoder.encode(data, 'image/png', target_bytes=1_000)


def test_render_failure_skips_only_that_file(monkeypatch):
    photo = SourceFile.from_bytes('photo.png', image_bytes(2000, 1000), type='image/png')
    text = SourceFile.from_bytes('notes.txt', b'hello')

    def broken_save(self, *args, **kwargs):
        raise ValueError('encoder unavailable')

    monkeypatch.setattr(Image.Image, 'save', broken_save)
    result = AttachmentIngestor().ingest([photo, text])

    assert [attachment.name for attachment in result.accepted] == ['notes.txt']
    assert result.error_message == '1 file(s) could not be processed.'
