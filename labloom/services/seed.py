from datetime import datetime, timedelta, timezone

from labloom.services.notes import format_timestamp, normalize_note, sort_notes_by_updated_at


def seed_notes(now=None):
    """Sample notes shown when neither the remote nor the local store has any."""
    now = now or datetime.now(timezone.utc)

    def ago(**delta):
        return format_timestamp(now - timedelta(**delta))

    raw = [
        {
            'id': '1',
            'title': 'Mobile UX notes',
            'content': (
                '### Interaction checklist\n'
                '- Check haptic feedback\n'
                '- Accessibility labels (VoiceOver)\n'
                '- Contrast ratio in light and dark mode\n\n'
                '> Review these before the next sprint'
            ),
            'createdAt': ago(days=2),
            'updatedAt': ago(hours=6),
            'category': 'research',
            'tags': [{'id': 'ux', 'label': 'UX'}, {'id': 'mobile', 'label': 'Mobile'}],
            'attachments': [
                {'id': 'att-1', 'name': 'motion-reference.mp4', 'size': 6_553_600, 'type': 'video/mp4'},
            ],
        },
        {
            'id': '2',
            'title': 'Portfolio content plan',
            'content': (
                '- Pick three flagship projects\n'
                '- Prepare before/after KPI charts\n'
                '- Extract five user interview quotes\n\n'
                '**Todo**: document the image upload flow'
            ),
            'createdAt': ago(days=5),
            'updatedAt': ago(days=2),
            'category': 'branding',
            'tags': [{'id': 'branding', 'label': 'Branding'}, {'id': 'netlify', 'label': 'Netlify'}],
            'attachments': [
                {'id': 'att-2', 'name': 'wireframe-v2.fig', 'size': 2_448_640, 'type': 'application/octet-stream'},
                {
                    'id': 'att-3',
                    'name': 'hero-mock.png',
                    'size': 1_048_576,
                    'type': 'image/png',
                    'previewUrl': 'https://images.unsplash.com/photo-1522199990770-6929e039bf0c?auto=format&fit=crop&w=600&q=80',
                },
            ],
        },
        {
            'id': '3',
            'title': 'Data model',
            'content': (
                '```sql\n'
                'CREATE TABLE notes (\n'
                '  id uuid PRIMARY KEY,\n'
                '  title text NOT NULL,\n'
                '  content text,\n'
                '  category text,\n'
                '  tags jsonb,\n'
                '  attachments jsonb,\n'
                '  created_at timestamptz DEFAULT now(),\n'
                '  updated_at timestamptz DEFAULT now()\n'
                ');\n'
                '```'
            ),
            'createdAt': ago(days=8),
            'updatedAt': ago(days=1),
            'category': 'backend',
            'tags': [{'id': 'postgres', 'label': 'PostgreSQL'}, {'id': 'schema', 'label': 'Schema'}],
            'attachments': [],
        },
    ]
    return sort_notes_by_updated_at([normalize_note(item) for item in raw])
