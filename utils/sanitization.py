# utils/sanitization.py
from typing import Optional
import html
import re

CONTROL_CHARS = r"[\x00-\x08\x0b-\x0c\x0e-\x1f\x7f-\x9f]"
MARKUP_TAGS = r"</?(?:i|b|em|strong|sub|sup|scp|p|br|span|jats:[a-z\-]+)(?:\s[^>]*)?/?>"


def clean_text(value: Optional[str]) -> str:
    if value is None:
        return ""

    text = re.sub(CONTROL_CHARS, "", value)
    return re.sub(r"\s+", " ", text).strip()


def strip_markup(value: Optional[str]) -> str:
    """
    OpenAlex titles and abstracts carry inline HTML/JATS tags and entities
    ("<i>in vivo</i>", "&amp;"). Remove tags, decode entities, then clean.
    """
    if not value:
        return ""
    text = re.sub(MARKUP_TAGS, " ", value, flags=re.IGNORECASE)
    return clean_text(html.unescape(text))


def is_nonempty_text(value: Optional[str]) -> bool:
    return bool(clean_text(value))
