import uuid


def create_random_id(prefix):
    """Random id with a readable prefix, e.g. ``note-3f2c…``."""
    return f'{prefix}-{uuid.uuid4()}'
