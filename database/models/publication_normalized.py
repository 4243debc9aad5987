# database/models/publication_normalized.py
from typing import List, Optional, TypedDict

from database.models.publication_model import Publication
from utils.text_lists import join_authors, join_ids, split_authors, split_ids


class NormalizedPublication(TypedDict, total=False):
    """
    Unified structure for a publication travelling between the OpenAlex
    client, the research scope cache and the derived pipelines.
    """

    id: int                  # OpenAlex work number, e.g. 2741809807 for W2741809807
    year: Optional[int]
    title: str
    abstract: str
    source: str              # venue display name
    language: str
    authors: List[str]       # ordered
    ref_ids: List[int]       # cited works, duplicates removed


def to_row(pub: NormalizedPublication) -> dict:
    return {
        "id": int(pub["id"]),
        "year": pub.get("year"),
        "title": pub.get("title") or "",
        "abstract": pub.get("abstract") or "",
        "source": pub.get("source") or "",
        "language": pub.get("language") or "",
        "authors": join_authors(pub.get("authors") or []),
        "ref_ids": join_ids(pub.get("ref_ids") or []),
    }


def from_row(row: Publication) -> NormalizedPublication:
    return NormalizedPublication(
        id=row.id,
        year=row.year,
        title=row.title or "",
        abstract=row.abstract or "",
        source=row.source or "",
        language=row.language or "",
        authors=split_authors(row.authors),
        ref_ids=split_ids(row.ref_ids),
    )
