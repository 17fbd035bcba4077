"""Keyword concepts and life-domain tagging.

Concept extraction is a pure function of member text: tokens are lower-cased
words of at least three letters, stopwords are dropped, and the most frequent
terms win with alphabetical order breaking ties. No external service is
involved, so the same member set always yields the same concepts.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Iterable

TOKEN_PATTERN = re.compile(r"[a-z][a-z']+")
MIN_TOKEN_LENGTH = 3

STOPWORDS = frozenset(
    """
    a about above after again against all almost also although always am an and
    another any anyone anything are around as at away back be became because been
    before being below between both but by came can cannot could did didn't do does
    doesn't doing don't done down during each either else enough even ever every
    few for from further get gets getting go goes going gone got had hadn't has
    hasn't have haven't having he her here hers herself him himself his how however
    i i'm i've if in into is isn't it it's its itself just keep kind know like lot
    made make makes many may me might more most much must my myself need never new
    no nor not nothing now of off often on once one only or other others our ours
    ourselves out over own really right said same say see seem seems she should
    since so some something still such than that that's the their theirs them
    themselves then there these they thing things think this those though through
    to today too under until up upon us very want was wasn't way we week well went
    were what when where which while who whom why will with within without won't
    would yes yet you you're your yours yourself yourselves feel feeling felt
    """.split()
)

# Life domains and the keywords that place a term in them
DOMAIN_KEYWORDS: dict[str, tuple[str, ...]] = {
    "work": ("work", "job", "career", "project", "meeting", "deadline", "boss", "office"),
    "relationships": ("relationship", "family", "friend", "partner", "love", "social"),
    "health": ("health", "exercise", "sleep", "nutrition", "wellness", "energy"),
    "growth": ("growth", "learning", "development", "progress", "goal", "achievement"),
    "emotional": ("emotion", "feeling", "mood", "anxiety", "happiness", "stress"),
}


def tokenize(text: str) -> list[str]:
    """Lower-cased content words of a text, stopwords removed."""
    tokens = []
    for token in TOKEN_PATTERN.findall(text.lower()):
        token = token.strip("'")
        if token.endswith("'s"):
            token = token[:-2]
        if len(token) < MIN_TOKEN_LENGTH or token in STOPWORDS:
            continue
        tokens.append(token)
    return tokens


def term_counts(texts: Iterable[str]) -> Counter:
    """Term frequency across a collection of texts."""
    counts: Counter = Counter()
    for text in texts:
        counts.update(tokenize(text))
    return counts


def top_terms(counts: Counter, k: int) -> list[tuple[str, int]]:
    """The k most frequent terms, ties broken alphabetically."""
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return ranked[:k]


def extract_concepts(texts: Iterable[str], k: int = 8) -> list[str]:
    """Top-k concepts for a set of member texts."""
    return [term for term, _ in top_terms(term_counts(texts), k)]


def categorize_domains(terms: Iterable[str]) -> list[str]:
    """Life domains touched by a set of terms, in DOMAIN_KEYWORDS order."""
    terms = [t.lower() for t in terms]
    domains = []
    for domain, keywords in DOMAIN_KEYWORDS.items():
        if any(keyword in term for term in terms for keyword in keywords):
            domains.append(domain)
    return domains
