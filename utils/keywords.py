# utils/keywords.py
import re
from typing import List

from utils.sanitization import clean_text


def normalize_keyword(value: str) -> str:
    """
    Lower-case, strip control characters and collapse whitespace.
    Characters with a meaning in the scope serialization (',', ';', '&') are
    turned into spaces.
    """
    text = clean_text(value).lower()
    text = re.sub(r"[;&]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def split_keywords(value: str) -> List[str]:
    """Split a comma-joined keyword group into sorted, unique, normalized keywords."""
    if not value:
        return []
    keywords = {normalize_keyword(part) for part in value.split(",")}
    keywords.discard("")
    return sorted(keywords)
