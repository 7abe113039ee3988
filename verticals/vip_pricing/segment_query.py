"""Segment membership predicate builder.

Tag values are placed inside a single-quoted string literal of the segment
query language. Characters that could close the literal or start an escape
are rejected instead of being interpolated.
"""

from core.errors import ValidationError

_FORBIDDEN = {"'": "single quote", "\\": "backslash"}


def validate_tag(tag: str | None) -> str:
    """Return the tag unchanged, or raise ValidationError."""
    if tag is None or not tag.strip():
        raise ValidationError("missing tag")

    for char, name in _FORBIDDEN.items():
        if char in tag:
            raise ValidationError(f"tag may not contain a {name}", details={"tag": tag})

    if any(ord(c) < 32 or ord(c) == 127 for c in tag):
        raise ValidationError("tag may not contain control characters", details={"tag": tag})

    return tag


def build_tag_segment_query(tag: str) -> str:
    """Predicate selecting customers that carry `tag`."""
    return f"customer_tags CONTAINS '{validate_tag(tag)}'"


def segment_name_for(tag: str) -> str:
    return f"{tag} Users"
