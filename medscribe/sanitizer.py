import html
import logging
import re
from typing import Any

import bleach

logger = logging.getLogger(__name__)

_FENCED_CODE_RE = re.compile(r"```[\s\S]*?```")
_BOLD_STAR_RE = re.compile(r"\*\*(.*?)\*\*")
_BOLD_UNDERSCORE_RE = re.compile(r"__(.*?)__")
_ITALIC_STAR_RE = re.compile(r"\*(.*?)\*")
_ITALIC_UNDERSCORE_RE = re.compile(r"_(.*?)_")
_STRIKE_RE = re.compile(r"~~(.*?)~~")
_INLINE_CODE_RE = re.compile(r"`(.*?)`")
_HEADER_RE = re.compile(r"^#{1,6}\s+", re.MULTILINE)
_BULLET_RE = re.compile(r"^[ \t]*[-*+][ \t]+", re.MULTILINE)
_NUMBERED_RE = re.compile(r"^\d+\.[ \t]+", re.MULTILINE)
_BLANK_RUN_RE = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")

BULLET = "• "
_MAX_PASSES = 64


def sanitize_text(value: str) -> str:
    """Return a sanitized version of *value* with HTML stripped.

    This removes any HTML tags to mitigate XSS attacks.  The result is plain
    text, so the entity escaping bleach applies to the remaining characters
    is undone and "BP > 140 & LDL < 100" is stored as written.
    """
    return html.unescape(bleach.clean(value, tags=[], attributes={}, strip=True))


def _strip(text: str) -> str:
    text = _FENCED_CODE_RE.sub("", text)
    # Bullets are rewritten before emphasis so a leading "* " is not read as
    # the opening of an italic span.
    text = _BULLET_RE.sub(BULLET, text)
    text = _BOLD_STAR_RE.sub(r"\1", text)
    text = _BOLD_UNDERSCORE_RE.sub(r"\1", text)
    text = _ITALIC_STAR_RE.sub(r"\1", text)
    text = _ITALIC_UNDERSCORE_RE.sub(r"\1", text)
    text = _STRIKE_RE.sub(r"\1", text)
    text = _INLINE_CODE_RE.sub(r"\1", text)
    text = _HEADER_RE.sub("", text)
    text = _NUMBERED_RE.sub("", text)
    text = _BLANK_RUN_RE.sub("\n\n", text)
    return text.strip()


def strip_markdown(text: Any) -> Any:
    """Remove markdown formatting from model output or pasted notes.

    Emphasis, strike-through and inline code markers are replaced by their
    inner text, fenced code blocks are dropped, header and numbered-list
    markers are removed, bullets become ``•``, runs of blank lines collapse
    to one and the result is trimmed.  Non-string input and internal
    failures return the input unchanged.
    """

    if not isinstance(text, str):
        return text
    try:
        # Removing one marker can expose another at line start ("# - a"), so
        # passes repeat until the text stops changing.
        current = text
        for _ in range(_MAX_PASSES):
            cleaned = _strip(current)
            if cleaned == current:
                return cleaned
            current = cleaned
        return current
    except Exception:  # pragma: no cover - regex engine failures
        logger.exception("markdown_strip_failed")
        return text
