# utils/text_lists.py
from typing import Iterable, List, Optional

# Legacy on-disk encoding of list columns (ids, ref_ids, authors, terms)
DELIMITER = ","


def join_ids(ids: Iterable[int]) -> str:
    return DELIMITER.join(str(int(i)) for i in ids)


def split_ids(value: Optional[str]) -> List[int]:
    """Parse a comma-joined id list, keeping order and skipping blanks."""
    if not value:
        return []
    return [int(part) for part in value.split(DELIMITER) if part.strip()]


def join_authors(authors: Iterable[str]) -> str:
    # Commas inside a name would split it on read
    return DELIMITER.join(a.replace(DELIMITER, " ").strip() for a in authors if a)


def split_authors(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [a.strip() for a in value.split(DELIMITER) if a.strip()]


join_terms = join_authors
split_terms = split_authors
