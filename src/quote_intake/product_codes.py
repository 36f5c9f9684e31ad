"""
Predicates deciding whether a table cell looks like a product code.

A value is a candidate when it matches one of PRODUCT_CODE_SHAPES, has a
plausible length, and trips none of the REJECTIONS.
"""

import re
from typing import Callable, List, Tuple

Predicate = Callable[[str], bool]

_LETTER = re.compile(r"[A-Za-z]")
_DIGIT = re.compile(r"[0-9]")
_ALPHA_MODEL = re.compile(r"^[A-Za-z][A-Za-z\-._%]{1,20}$")
_SEPARATED_NUMBER = re.compile(r"^[0-9][0-9\-.]{2,15}$")
_ALNUM_WITH_SEPARATORS = re.compile(r"^[A-Za-z0-9][A-Za-z0-9\-._%\s]{1,25}$")
_PLAIN_NUMBER = re.compile(r"^\d+\.?\d*$")
_PRICE = re.compile(r"^\$?\d+\.?\d{0,2}$")
_LINE_INDEX = re.compile(r"^[0-9]{1,3}$")


def has_letters_and_digits(value: str) -> bool:
    """Most part numbers mix letters and digits (``A-100``, ``X9``)."""
    return bool(_LETTER.search(value) and _DIGIT.search(value))


def is_alpha_model_name(value: str) -> bool:
    return bool(_ALPHA_MODEL.match(value))


def is_separated_number(value: str) -> bool:
    """Digits with dashes or dots, e.g. ``123-456``."""
    return bool(_SEPARATED_NUMBER.match(value))


def is_alnum_with_separators(value: str) -> bool:
    return bool(_ALNUM_WITH_SEPARATORS.match(value))


def has_reasonable_length(value: str) -> bool:
    return 2 <= len(value) <= 30


def looks_like_quantity(value: str) -> bool:
    """A bare number below 1000."""
    return bool(_PLAIN_NUMBER.match(value)) and float(value) < 1000


def looks_like_price(value: str) -> bool:
    return bool(_PRICE.match(value))


def looks_like_phrase(value: str) -> bool:
    """Four or more words read as a description, not a code."""
    return len(value.split(" ")) >= 4


def looks_like_line_index(value: str) -> bool:
    """Pure digit strings of up to three characters are row numbers."""
    return bool(_LINE_INDEX.match(value))


PRODUCT_CODE_SHAPES: List[Tuple[str, Predicate]] = [
    ("letters_and_digits", has_letters_and_digits),
    ("alpha_model_name", is_alpha_model_name),
    ("separated_number", is_separated_number),
    ("alnum_with_separators", is_alnum_with_separators),
]

REJECTIONS: List[Tuple[str, Predicate]] = [
    ("quantity", looks_like_quantity),
    ("price", looks_like_price),
    ("phrase", looks_like_phrase),
]


def looks_like_product_code(value: str) -> bool:
    value = value.strip()
    if not value or not has_reasonable_length(value):
        return False
    if not any(shape(value) for _, shape in PRODUCT_CODE_SHAPES):
        return False
    return not any(reject(value) for _, reject in REJECTIONS)
