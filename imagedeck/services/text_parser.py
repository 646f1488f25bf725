"""
Convert a pasted text block into slide descriptions.
"""
import re
from typing import List, Optional

_BULLET_RE = re.compile(r"^[-*•]\s+")
_NUMBERED_RE = re.compile(r"^\d+[.)]\s+")
# "~name" is accepted as an alternative to "@name" when pasting text
_TILDE_REFERENCE_RE = re.compile(r"~([a-zA-Z0-9][a-zA-Z0-9-]*)")
_AT_REFERENCE_RE = re.compile(r"@([a-zA-Z0-9][a-zA-Z0-9-]*)")


def parse_text_to_slides(text: Optional[str]) -> List[str]:
    """
    Split text into one slide description per non-empty line.

    Bullet ("-", "*", "•") and numbered ("1." / "1)") markers are stripped
    and ~name references become @name.
    """
    if not text:
        return []

    slides: List[str] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        line = _BULLET_RE.sub("", line)
        line = _NUMBERED_RE.sub("", line)
        if not line:
            continue
        slides.append(_TILDE_REFERENCE_RE.sub(r"@\1", line))
    return slides


def extract_entity_names(text: Optional[str]) -> List[str]:
    """Unique @name references in first-seen order."""
    if not text:
        return []
    return list(dict.fromkeys(m.group(1) for m in _AT_REFERENCE_RE.finditer(text)))
