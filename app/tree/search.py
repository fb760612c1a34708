"""
Name-chain search.

A query such as "محمد عبدالله" is matched against every blood relative's
father line. Terms that line up with the start of the line score highest;
the further up the line they align, the lower the score.
"""

import re
from typing import Iterable, Union

from sqlmodel import Session, select

from app.config import settings
from app.models import Profile
from app.results import InvalidInputError
from app.tree.name_chain import NameChainBuilder

_DIACRITICS = re.compile(r"[\u064B-\u0652\u0670\u0640]")
_LETTER_VARIANTS = str.maketrans({"أ": "ا", "إ": "ا", "آ": "ا", "ٱ": "ا", "ة": "ه", "ى": "ي"})

ALIGNED_SCORES = {0: 10, 1: 7, 2: 5}
DEEP_ALIGNED_SCORE = 3
BAG_OF_WORDS_SCORE = 1


def normalize_name(value: str) -> str:
    """Fold Arabic letter variants, strip diacritics and case."""
    value = _DIACRITICS.sub("", value).translate(_LETTER_VARIANTS)
    return " ".join(value.split()).casefold()


def prepare_terms(terms: Union[str, Iterable[str]]) -> list[str]:
    if isinstance(terms, str):
        terms = terms.split()
    prepared = []
    for term in terms:
        normalized = normalize_name(term or "")
        if len(normalized) >= settings.search_min_term_length:
            prepared.append(normalized)
    return prepared


def term_matches(term: str, name: str) -> bool:
    if name == term or name.startswith(term):
        return True
    return any(word.startswith(term) for word in name.split())


def score_chain(terms: list[str], names: list[str]) -> int:
    """Score a father line (self first) against the query terms; 0 means no match."""
    width = len(terms)
    for skip in range(0, len(names) - width + 1):
        window = names[skip : skip + width]
        if all(term_matches(term, name) for term, name in zip(terms, window)):
            return ALIGNED_SCORES.get(skip, DEEP_ALIGNED_SCORE)
    if all(any(term_matches(term, name) for name in names) for term in terms):
        return BAG_OF_WORDS_SCORE
    return 0


def search_by_name_terms(
    session: Session, terms: Union[str, Iterable[str]], limit: int = 50, offset: int = 0
) -> dict:
    """
    Rank active blood relatives by how well their name chain matches ``terms``.

    Married-in profiles have no father line in the tree and are not searched.
    """
    prepared = prepare_terms(terms)
    if not prepared:
        raise InvalidInputError(
            f"Provide at least one search term of {settings.search_min_term_length} or more characters"
        )
    if limit > settings.search_max_limit:
        raise InvalidInputError(f"limit cannot exceed {settings.search_max_limit}", limit=limit)
    if limit <= 0:
        limit = settings.search_default_limit
    offset = max(offset, 0)

    profiles = session.exec(
        select(Profile).where(Profile.hid != None).where(Profile.deleted_at == None)  # noqa: E711
    ).all()

    builder = NameChainBuilder(session)
    hits = []
    for profile in profiles:
        lineage = builder.lineage(profile)
        score = score_chain(prepared, [normalize_name(name) for name in lineage])
        if score:
            hits.append((score, profile, lineage))

    hits.sort(key=lambda hit: (-hit[0], hit[1].generation or 0, hit[1].name))
    page = hits[offset : offset + limit]
    return {
        "results": [
            {
                "id": str(profile.id),
                "name": profile.name,
                "name_chain": builder.build(profile),
                "father_name": lineage[1] if len(lineage) > 1 else None,
                "grandfather_name": lineage[2] if len(lineage) > 2 else None,
                "hid": profile.hid,
                "generation": profile.generation,
                "version": profile.version,
                "score": score,
            }
            for score, profile, lineage in page
        ],
        "total": len(hits),
        "limit": limit,
        "offset": offset,
    }
