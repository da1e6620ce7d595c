import pytest

from labloom.errors import NoteValidationError
from labloom.services.notes import (
    EMPTY_SNAPSHOT,
    Attachment,
    build_note_input,
    content_signature,
    dedupe_attachments,
    filter_notes,
    list_categories,
    list_tags,
    normalize_attachment,
    normalize_note,
    snapshot_hash,
    sort_notes_by_updated_at,
)
from labloom.services.seed import seed_notes
from labloom.services.tags import format_tag_input, parse_tag_input, slugify


def note(note_id, title='Title', updated='2024-01-15T10:00:00.000Z', **fields):
    raw = {'id': note_id, 'title': title, 'createdAt': '2024-01-01T00:00:00.000Z', 'updatedAt': updated}
    raw.update(fields)
    return normalize_note(raw)


def test_normalize_note_fills_defaults():
    result = normalize_note({'id': 7, 'title': ' Hello ', 'createdAt': '2024-01-15T10:30:00Z'})

    assert result.id == '7'
    assert result.title == 'Hello'
    assert result.content == ''
    assert result.category == ''
    assert result.tags == ()
    assert result.attachments == ()
    assert result.created_at == '2024-01-15T10:30:00.000Z'
    assert result.updated_at == result.created_at


@pytest.mark.parametrize('raw', [
    {'title': 'No id'},
    {'id': 'x'},
    {'id': 'x', 'title': '   '},
    'not a mapping',
])
def test_normalize_note_rejects_incomplete(raw):
    with pytest.raises(NoteValidationError):
        normalize_note(raw)


def test_updated_at_never_precedes_created_at():
    result = normalize_note({
        'id': '1', 'title': 'T', 'createdAt': '2024-02-01T00:00:00Z', 'updatedAt': '2024-01-01T00:00:00Z',
    })

    assert result.updated_at == result.created_at


def test_normalize_attachment_defaults():
    result = normalize_attachment({'size': 'huge'})

    assert result.id.startswith('att-')
    assert result.name == 'attachment'
    assert result.type == 'application/octet-stream'
    assert result.size == 0


def test_normalize_attachment_syncs_data_url_preview():
    data_url = 'data:text/plain;base64,aGVsbG8='

    from_preview = normalize_attachment({'id': 'a', 'previewUrl': data_url})
    from_data = normalize_attachment({'id': 'b', 'dataUrl': data_url, 'previewUrl': 'data:image/png;base64,AAAA'})

    assert from_preview.data_url == data_url
    assert from_preview.size == 5
    assert from_data.preview_url == data_url


def test_normalize_attachment_keeps_remote_preview():
    result = normalize_attachment({
        'id': 'a', 'previewUrl': 'https://example.com/a.png', 'dataUrl': 'data:image/png;base64,AAAA',
    })

    assert result.preview_url == 'https://example.com/a.png'


def test_build_note_input_requires_title():
    with pytest.raises(NoteValidationError) as excinfo:
        build_note_input('   ')

    assert str(excinfo.value) == 'Please enter a title.'


def test_sort_by_updated_at_descending():
    notes = [note('a', updated='2024-01-01T00:00:00Z'), note('b', updated='2024-03-01T00:00:00Z'),
             note('c', updated='2024-02-01T00:00:00Z')]

    assert [n.id for n in sort_notes_by_updated_at(notes)] == ['b', 'c', 'a']


def test_filter_notes():
    notes = [
        note('1', 'Schema', content='tables', category='backend',
             tags=[{'id': 'postgres', 'label': 'PostgreSQL'}, {'id': 'schema', 'label': 'Schema'}]),
        note('2', 'Index', category='backend', tags=[{'id': 'postgres', 'label': 'PostgreSQL'}]),
        note('3', 'Copy', content='Hero text', category='branding'),
    ]

    assert [n.id for n in filter_notes(notes, category='backend')] == ['1', '2']
    assert [n.id for n in filter_notes(notes, tags=['postgres', 'schema'])] == ['1']
    assert [n.id for n in filter_notes(notes, search='hero')] == ['3']
    assert [n.id for n in filter_notes(notes, search='postgresql')] == ['1', '2']
    assert filter_notes(notes, category='backend', search='copy') == []


def test_list_categories_and_tags():
    notes = seed_notes()

    assert list_categories(notes) == [('backend', 1), ('branding', 1), ('research', 1)]
    assert [tag.id for tag in list_tags(notes)][:2] == ['branding', 'mobile']


def test_parse_tag_input():
    tags = parse_tag_input(' UX ,ux, Mobile  App,, ')

    assert [(tag.id, tag.label) for tag in tags] == [('ux', 'UX'), ('mobile-app', 'Mobile App')]
    assert format_tag_input(tags) == 'UX, Mobile App'


def test_slugify_falls_back_to_random_id():
    assert slugify('Data & ML') == 'data-ml'
    assert slugify('!!!').startswith('tag-')


def test_dedupe_attachments():
    first = Attachment(id='a', name='a.txt', size=5, type='text/plain')
    same_name_and_size = Attachment(id='b', name='a.txt', size=5, type='text/plain')
    other = Attachment(id='c', name='c.txt', size=9, type='text/plain')

    result = dedupe_attachments([first], [same_name_and_size, other, other])

    assert [attachment.id for attachment in result] == ['a', 'c']


def test_snapshot_hash():
    notes = seed_notes()

    assert snapshot_hash([]) == EMPTY_SNAPSHOT
    assert snapshot_hash(notes) == snapshot_hash(list(notes))
    assert snapshot_hash(notes) != snapshot_hash(notes[1:])


def test_content_signature_ignores_ids_and_timestamps():
    draft = build_note_input('Same', content='body', tags=parse_tag_input('a, b'))
    stored = note('server-id', 'Same', content='body', tags=[{'id': 'b', 'label': 'b'}, {'id': 'a', 'label': 'a'}])

    assert content_signature(draft) == content_signature(stored)


def test_seed_notes_are_sorted():
    notes = seed_notes()

    assert [n.id for n in notes] == ['1', '3', '2']
