# services/term_extraction.py
import re
from collections import Counter
from itertools import combinations
from typing import Dict, Iterable, List

from utils.sanitization import clean_text

TOKEN_PATTERN = re.compile(r"[a-z][a-z0-9\-]*[a-z0-9]")

STOPWORDS = frozenset("""
a about above across after again against all almost also although always among an and another any
are around as at based be because been before being below between both but by can could did do does
doing done due during each either et al etc few for from further had has have having here how however
if in into is it its itself just least less many may might more most much must near neither no nor
not of off often on once one only or other others our out over own per perhaps please rather same
several shall should show shows shown since so some such than that the their them then there these
they this those though through thus to too toward towards under until up upon us use used using very
via was we well were what when where whether which while who whom whose why will with within without
would yet you your paper study studies result results method methods approach approaches propose
proposed present presents new two three first second therefore found find
""".split())

MIN_TERM_LENGTH = 3


def extract_terms(title: str, abstract: str) -> List[str]:
    """Distinct content words of a publication, in order of first appearance."""
    text = clean_text(f"{title or ''} {abstract or ''}").lower()
    seen = set()
    terms = []
    for token in TOKEN_PATTERN.findall(text):
        if len(token) < MIN_TERM_LENGTH or token in STOPWORDS or token.isdigit():
            continue
        if token not in seen:
            seen.add(token)
            terms.append(token)
    return terms


def build_vocabulary(terms_by_pub: Dict[int, List[str]], size: int, min_document_frequency: int = 2) -> List[str]:
    """Most frequent terms by document frequency; ties broken alphabetically."""
    df = Counter(t for terms in terms_by_pub.values() for t in set(terms))
    ranked = sorted(
        (t for t, n in df.items() if n >= min_document_frequency),
        key=lambda t: (-df[t], t),
    )
    return ranked[:size]


def biterm_key(a: str, b: str) -> str:
    return f"{a}&{b}" if a < b else f"{b}&{a}"


def split_biterm(key: str) -> List[str]:
    return key.split("&", 1)


def biterm_weights(terms_by_pub: Dict[int, List[str]]) -> Dict[str, float]:
    """
    Share of publications in which each pair of terms co-occurs.
    Publications without scope terms still count in the denominator.
    """
    if not terms_by_pub:
        return {}
    counts: Counter = Counter()
    for terms in terms_by_pub.values():
        for a, b in combinations(sorted(set(terms)), 2):
            counts[biterm_key(a, b)] += 1
    total = len(terms_by_pub)
    return {key: n / total for key, n in sorted(counts.items())}


def covers_biterm(terms: Iterable[str], key: str) -> bool:
    term_set = set(terms)
    return all(part in term_set for part in split_biterm(key))
