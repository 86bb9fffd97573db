import re
from typing import Iterable, Optional

_NON_WORD = re.compile(r'[^\w ]+', re.ASCII)
_SPACES = re.compile(r' +')


def slugify(text: Optional[str]) -> str:
    """
    URL-friendly slug: lowercase, keep ASCII letters, digits, underscores
    and spaces only, trim, then join words with single hyphens. Accented
    letters are dropped rather than transliterated ("Café" becomes "caf").
    Existing hyphens count as spaces, so a slug maps to itself.

    No uniqueness guarantee; two names can share a slug.
    """
    if not text:
        return ""
    cleaned = _NON_WORD.sub('', text.lower().replace('-', ' ')).strip()
    return _SPACES.sub('-', cleaned)


def contains_text(needle: str, *haystacks: Optional[str]) -> bool:
    """Case-insensitive substring match against any of the given strings."""
    needle = needle.lower()
    return any(h and needle in h.lower() for h in haystacks)


def any_contains_text(needle: str, values: Optional[Iterable[str]]) -> bool:
    return bool(values) and any(contains_text(needle, v) for v in values)
