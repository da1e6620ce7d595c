from labloom.models.note import Note

__all__ = ['Note']
