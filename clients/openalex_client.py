# clients/openalex_client.py
import logging
import os
import random
import re
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Iterable, Iterator, List, Optional

import requests

from database.models.publication_normalized import NormalizedPublication
from utils.sanitization import is_nonempty_text, strip_markup

logger = logging.getLogger(__name__)

OPENALEX_WORKS_URL = "https://api.openalex.org/works"
OPENALEX_FIELDS = [
    "id",
    "publication_year",
    "title",
    "abstract_inverted_index",
    "primary_location",
    "language",
    "authorships",
    "referenced_works",
]

# OpenAlex accepts at most 100 alternatives in one OR filter
IDS_PER_REQUEST = 100

_WORK_ID = re.compile(r"W(\d+)$")


def parse_work_id(value: Optional[str]) -> Optional[int]:
    """'https://openalex.org/W2741809807' -> 2741809807"""
    if not value:
        return None
    match = _WORK_ID.search(value.strip())
    return int(match.group(1)) if match else None


def format_work_id(work_id: int) -> str:
    return f"W{int(work_id)}"


def reconstruct_abstract(inverted_index: Optional[Dict[str, List[int]]]) -> str:
    """Rebuild plain text from OpenAlex's token -> positions index."""
    if not inverted_index:
        return ""
    positions: Dict[int, str] = {}
    for token, indices in inverted_index.items():
        for idx in indices:
            positions[idx] = token
    return " ".join(positions[i] for i in sorted(positions))


def map_work(work: dict) -> Optional[NormalizedPublication]:
    work_id = parse_work_id(work.get("id"))
    if work_id is None:
        return None

    authors = []
    for authorship in work.get("authorships") or []:
        name = ((authorship or {}).get("author") or {}).get("display_name")
        if is_nonempty_text(name):
            authors.append(strip_markup(name))

    ref_ids = []
    seen = set()
    for ref in work.get("referenced_works") or []:
        ref_id = parse_work_id(ref)
        if ref_id is not None and ref_id not in seen:
            seen.add(ref_id)
            ref_ids.append(ref_id)

    source = ((work.get("primary_location") or {}).get("source") or {}).get("display_name")

    return NormalizedPublication(
        id=work_id,
        year=work.get("publication_year"),
        title=strip_markup(work.get("title")),
        abstract=strip_markup(reconstruct_abstract(work.get("abstract_inverted_index"))),
        source=strip_markup(source),
        language=work.get("language") or "",
        authors=authors,
        ref_ids=ref_ids,
    )


def retry_after_seconds(value: Optional[str], default: float) -> float:
    """Retry-After is either delay-seconds or an HTTP date."""
    if not value:
        return default
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.warning(f"Unparseable Retry-After header {value!r}, backing off {default:.1f}s")
        return default
    if when is None:
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


class OpenAlexClient:
    """
    Minimal OpenAlex works client: keyword-pair search per year and lookup
    by work id. Network failures surface as `requests.RequestException`
    after the retries are used up, so callers can tell a failed fetch from
    an empty one.
    """

    def __init__(
        self,
        per_page: int = 200,
        max_records: int = 1000,
        timeout: int = 30,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        rate_limit_interval: float = 0.1,
        session: Optional[requests.Session] = None,
    ):
        self.per_page = per_page
        self.max_records = max_records
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.rate_limit_interval = rate_limit_interval
        self.session = session or requests.Session()

        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": os.getenv("OPENALEX_USER_AGENT", "westseer/1.0"),
        })
        self.mailto = os.getenv("OPENALEX_MAILTO")
        self.api_key = os.getenv("OPENALEX_API_KEY")

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------
    def search(self, combination: str, year: int) -> List[NormalizedPublication]:
        """Works of `year` mentioning both keywords of a combination ("a&b")."""
        terms = [t for t in combination.split("&") if t]
        query = " AND ".join(f'"{t}"' for t in terms)
        params = {
            "search": query,
            "filter": f"publication_year:{year}",
            "select": ",".join(OPENALEX_FIELDS),
            "per-page": self.per_page,
        }

        logger.info(f"🔎 OpenAlex search {combination}/{year}")
        pubs = []
        for work in self._iter_pages(params):
            pub = map_work(work)
            if pub is not None:
                pubs.append(pub)
            if self.max_records and len(pubs) >= self.max_records:
                logger.info(f"OpenAlex record cap ({self.max_records}) reached for {combination}/{year}")
                break

        logger.info(f"📘 OpenAlex returned {len(pubs)} works for {combination}/{year}")
        return pubs

    def fetch_by_ids(self, ids: Iterable[int]) -> List[NormalizedPublication]:
        ids = list(ids)
        pubs = []
        for start in range(0, len(ids), IDS_PER_REQUEST):
            batch = ids[start:start + IDS_PER_REQUEST]
            params = {
                "filter": "openalex_id:" + "|".join(format_work_id(i) for i in batch),
                "select": ",".join(OPENALEX_FIELDS),
                "per-page": IDS_PER_REQUEST,
            }
            data = self._request_with_retry(params)
            for work in data.get("results", []):
                pub = map_work(work)
                if pub is not None:
                    pubs.append(pub)

        logger.info(f"📥 OpenAlex resolved {len(pubs)} of {len(ids)} referenced works")
        return pubs

    # ------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------
    def _iter_pages(self, params: Dict) -> Iterator[dict]:
        cursor = "*"
        while cursor:
            data = self._request_with_retry({**params, "cursor": cursor})
            results = data.get("results", [])
            yield from results

            cursor = (data.get("meta") or {}).get("next_cursor")
            if not results:
                break
            if cursor and self.rate_limit_interval:
                time.sleep(self.rate_limit_interval)

    def _request_with_retry(self, params: Dict) -> Dict:
        if self.mailto:
            params = {**params, "mailto": self.mailto}
        if self.api_key:
            params = {**params, "api_key": self.api_key}

        for attempt in range(1, self.max_retries + 1):
            try:
                resp = self.session.get(OPENALEX_WORKS_URL, params=params, timeout=self.timeout)

                if resp.status_code == 429:
                    wait_time = retry_after_seconds(
                        resp.headers.get("Retry-After"), self.backoff_seconds * (2 ** attempt)
                    )
                    # Cap wait time to avoid hanging too long, add jitter
                    wait_time = min(wait_time, 30) + random.uniform(0, 0.5)
                    if attempt >= self.max_retries:
                        resp.raise_for_status()
                    logger.warning(
                        f"⚠️ OpenAlex rate limit (429). Retrying in {wait_time:.2f}s "
                        f"(attempt {attempt}/{self.max_retries})"
                    )
                    time.sleep(wait_time)
                    continue

                resp.raise_for_status()
                return resp.json()

            except requests.RequestException as e:
                if attempt >= self.max_retries:
                    logger.error(f"❌ OpenAlex request failed after {attempt} attempts: {e}")
                    raise
                sleep_for = self.backoff_seconds * attempt
                logger.warning(f"OpenAlex request error: {e}. Retrying in {sleep_for:.1f}s")
                time.sleep(sleep_for)

        # The loop either returns or raises
        raise requests.RequestException("OpenAlex retries exhausted")
