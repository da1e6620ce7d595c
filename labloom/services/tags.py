import re
from dataclasses import dataclass

from labloom.services.ids import create_random_id

_NON_ALNUM = re.compile(r'[\W_]+')
_WHITESPACE = re.compile(r'\s+')


@dataclass(frozen=True)
class Tag:
    id: str
    label: str

    def to_dict(self):
        return {'id': self.id, 'label': self.label}


def slugify(label):
    """Turn a tag label into its id: lowercase, non-alphanumeric runs become '-'."""
    slug = _NON_ALNUM.sub('-', label.strip().lower()).strip('-')
    return slug or create_random_id('tag')


def parse_tag_input(text):
    """Parse comma separated tag input into unique tags, first label wins."""
    unique = {}
    for token in (text or '').split(','):
        label = _WHITESPACE.sub(' ', token.strip())
        if not label:
            continue
        tag_id = slugify(label)
        if tag_id not in unique:
            unique[tag_id] = Tag(id=tag_id, label=label)
    return list(unique.values())


def format_tag_input(tags):
    return ', '.join(tag.label for tag in tags)


def normalize_tags(raw):
    """Accept tag dicts, bare labels or Tag objects; drop junk and duplicate ids."""
    if not isinstance(raw, (list, tuple)):
        return ()
    unique = {}
    for item in raw:
        if isinstance(item, Tag):
            tag = item
        elif isinstance(item, str):
            label = _WHITESPACE.sub(' ', item.strip())
            if not label:
                continue
            tag = Tag(id=slugify(label), label=label)
        elif isinstance(item, dict):
            label = str(item.get('label') or item.get('id') or '').strip()
            if not label:
                continue
            tag_id = str(item.get('id') or '').strip() or slugify(label)
            tag = Tag(id=tag_id, label=label)
        else:
            continue
        unique.setdefault(tag.id, tag)
    return tuple(unique.values())
