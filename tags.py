"""
User badge tags.

A user's tags are stored as one JSON text blob mapping label -> 0/1.
Only labels flagged 1 are shown next to the user's name. Users can switch
their existing tags on and off, but new labels are only ever added by the
admin tooling (``tools/manage_users.py``).
"""

import json
import logging
from urllib.parse import quote

from markupsafe import Markup, escape

logger = logging.getLogger(__name__)

TAG_FIELD_PREFIX = 'tag_'
BADGE_CLASSES = (
    'inline-block bg-transparent text-gray-600 text-xs px-2 py-0.5 rounded-full '
    'font-bold border border-gray-300 mr-1 align-middle'
)


def decode_tags(blob):
    """Parse a stored tag blob; anything unusable becomes an empty mapping."""
    if not blob:
        return {}
    try:
        tags = json.loads(blob)
    except (TypeError, ValueError, RecursionError):
        logger.debug("Ignoring malformed tag blob: %r", blob)
        return {}
    if not isinstance(tags, dict):
        return {}
    return tags


def encode_tags(tags):
    return json.dumps(tags)


def is_active_flag(flag):
    # bool is an int subclass; True must not count as the flag 1.
    return not isinstance(flag, bool) and isinstance(flag, (int, float)) and flag == 1


def active_labels(blob):
    """Labels flagged exactly 1, in stored order."""
    return [label for label, flag in decode_tags(blob).items() if is_active_flag(flag)]


def render_tags(blob):
    """Badge markup for a user's active tags (empty string when none)."""
    labels = active_labels(blob)
    if not labels:
        return Markup('')
    return Markup('').join(
        Markup('<span class="{}">{}</span>').format(BADGE_CLASSES, escape(label))
        for label in labels
    )


def tag_form_key(label):
    """Checkbox field name for a tag, percent-encoded like encodeURIComponent."""
    return TAG_FIELD_PREFIX + quote(str(label), safe="!*'()")


def apply_toggles(current_state, submitted_flags):
    """Recompute the tag mapping from a submitted profile form.

    Only keys of ``current_state`` are considered. A key is switched on when
    its checkbox came back with the value "1" and off otherwise; form fields
    for labels the user does not already have are ignored.
    """
    new_state = {}
    for label in current_state:
        new_state[label] = 1 if submitted_flags.get(tag_form_key(label)) == '1' else 0
    return new_state
