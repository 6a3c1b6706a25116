from __future__ import annotations

import re
from typing import Dict, List, Optional

CYRILLIC_TRANSLITERATION: Dict[str, str] = {
    "а": "a",
    "б": "b",
    "в": "v",
    "г": "g",
    "д": "d",
    "е": "e",
    "ё": "e",
    "ж": "zh",
    "з": "z",
    "и": "i",
    "й": "y",
    "к": "k",
    "л": "l",
    "м": "m",
    "н": "n",
    "о": "o",
    "п": "p",
    "р": "r",
    "с": "s",
    "т": "t",
    "у": "u",
    "ф": "f",
    "х": "kh",
    "ц": "ts",
    "ч": "ch",
    "ш": "sh",
    "щ": "shch",
    "ъ": "",
    "ы": "y",
    "ь": "",
    "э": "e",
    "ю": "yu",
    "я": "ya",
}

# Street, building, block and entrance markers, in transliterated form.
NOISE_TOKENS = {
    "ul",
    "ulitsa",
    "ulica",
    "pr",
    "prt",
    "prosp",
    "prospekt",
    "d",
    "dom",
    "k",
    "korp",
    "korpus",
    "str",
    "stroenie",
    "pod",
    "podezd",
    "st",
    "street",
    "bldg",
    "building",
    "blk",
    "block",
    "entrance",
}

_TRANSLITERATION_TABLE = str.maketrans(CYRILLIC_TRANSLITERATION)
NON_WORD_PATTERN = re.compile(r"[^\w\s]|_")
WHITESPACE_PATTERN = re.compile(r"\s+")


def transliterate(text: str) -> str:
    return text.translate(_TRANSLITERATION_TABLE)


def tokens(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return text.split()


def normalize_address(address_text: Optional[str]) -> str:
    """Canonical comparison form of a free-text address.

    Case-folds, transliterates Cyrillic to Latin, replaces everything but
    letters, digits and whitespace with spaces, and drops the noise tokens.
    The result is a fixed point: normalizing it again returns it unchanged.
    """
    if not address_text:
        return ""

    text = transliterate(str(address_text).casefold())
    text = NON_WORD_PATTERN.sub(" ", text)
    kept = [token for token in WHITESPACE_PATTERN.split(text) if token and token not in NOISE_TOKENS]
    return " ".join(kept)
