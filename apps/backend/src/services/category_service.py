"""
Category label normalization for registry section titles.

Awesome-list section headers are noisy ("💰 Finance & Fintech",
"Other", "Table of Contents"). normalize_category_name() folds them
into a small set of display labels; meta headers normalize to None.
"""
import re
import unicodedata
from typing import Optional

import inflect
from pydantic import BaseModel

from constants import (
    CATEGORY_ACRONYMS,
    CATEGORY_MAPPINGS,
    SINGULAR_CATEGORY_WORDS,
    SKIP_CATEGORIES,
)


class NormalizedCategory(BaseModel):
    name: str
    slug: str


_FULL_WIDTH = str.maketrans({"／": "/", "－": "-", "：": ":"})

_LEADING_NOISE = re.compile(r"^(?:for|with|using|based)\s+", re.IGNORECASE)
_TRAILING_NOTE = re.compile(r"(?:\(.*\)|\[.*\])$")

_TOOLS = re.compile(r"^(.+?)\s+tools?$")
_LIBRARIES = re.compile(r"^(.+?)\s+librar(?:y|ies)$")
_UTILITIES = re.compile(r"^(.+?)\s+(?:utilities|utils)$")
_COMPOUND = re.compile(r"^(.+?)\s+(?:and|&)\s+(.+)$")

_DISALLOWED = re.compile(r"[^a-zA-Z0-9\s/&.+-]")
_ALL_CAPS = re.compile(r"^[A-Z]{2,}$")

_inflect = inflect.engine()


def _is_emoji(ch: str) -> bool:
    code = ord(ch)
    if 0x1F000 <= code <= 0x1FAFF or 0x2600 <= code <= 0x27BF:
        return True
    # variation selector-16 and zero-width joiner glue emoji sequences
    if code in (0xFE0F, 0x200D):
        return True
    return unicodedata.category(ch) == "So"


def remove_emojis(value: str) -> str:
    return "".join(ch for ch in value if not _is_emoji(ch))


def generate_slug(name: str) -> str:
    slug = name.lower().replace("&", "and").replace("/", "-")
    slug = re.sub(r"[^\w\s-]", "", slug).strip()
    slug = re.sub(r"\s+", "-", slug)
    return re.sub(r"-+", "-", slug)


def should_skip_category(name: str) -> bool:
    lower = name.lower().strip()
    if len(lower) <= 2:
        return True
    if lower in SKIP_CATEGORIES:
        return True
    return lower.startswith("what is")


def _apply_mappings(name: str) -> Optional[str]:
    lower = name.lower().strip()

    if lower in CATEGORY_MAPPINGS:
        return CATEGORY_MAPPINGS[lower]

    for pattern in (_TOOLS, _LIBRARIES, _UTILITIES):
        match = pattern.match(lower)
        if match and match.group(1) in CATEGORY_MAPPINGS:
            return CATEGORY_MAPPINGS[match.group(1)]

    match = _COMPOUND.match(lower)
    if match:
        for part in match.groups():
            part = part.strip()
            if part in CATEGORY_MAPPINGS:
                return CATEGORY_MAPPINGS[part]

    return None


def _title_case(value: str) -> str:
    words = []
    for word in value.split():
        if _ALL_CAPS.match(word) or word in CATEGORY_ACRONYMS:
            words.append(word)
        else:
            words.append(word[:1].upper() + word[1:].lower())
    return " ".join(words)


def pluralize(name: str) -> str:
    """
    Pluralizes the last word of a label so "Web Framework" and "Web
    Frameworks" fold together. Gerunds, "-ment" nouns and mass nouns stay
    singular.
    """
    trimmed = name.strip()
    head, _, last = trimmed.rpartition(" ")
    lower = last.lower()

    if not last or lower.endswith(("ing", "ment")) or lower in SINGULAR_CATEGORY_WORDS:
        return trimmed
    # singular_noun() returns False for words that are not plural
    if _inflect.singular_noun(last) is not False:
        return trimmed

    plural = _inflect.plural_noun(last)
    return f"{head} {plural}" if head else plural


def normalize_category_name(raw: str) -> Optional[NormalizedCategory]:
    """
    Returns the display label and slug for a raw section title, or None
    when the title is a meta header or empty after cleanup.

    Mapped labels keep the casing of the lookup table; everything else is
    title-cased with known acronyms preserved, then
    pluralized.
    """
    cleaned = remove_emojis(raw.strip()).translate(_FULL_WIDTH).strip()
    cleaned = _LEADING_NOISE.sub("", cleaned)
    cleaned = _TRAILING_NOTE.sub("", cleaned.strip())
    cleaned = cleaned.strip().strip("-").strip()

    if should_skip_category(cleaned):
        return None

    mapped = _apply_mappings(cleaned)
    if mapped is not None:
        cleaned = mapped

    cleaned = re.sub(r"\s+", " ", cleaned)
    cleaned = _DISALLOWED.sub("", cleaned).strip()
    if not cleaned:
        return None

    name = cleaned if mapped is not None else pluralize(_title_case(cleaned))
    return NormalizedCategory(name=name, slug=generate_slug(name))
