import logging
from dataclasses import replace
from typing import List, Optional, Sequence

from ..core.utils import haversine_miles, normalize_address
from ..data.base import ListingCandidate
from .address_parser import ParsedAddress, parse_address

logger = logging.getLogger(__name__)

BASE_SCORE = 100
SOLD_BONUS = 20
# (max distance in miles, bonus); first matching tier wins
DISTANCE_TIERS = ((0.5, 50), (1.0, 30), (2.0, 10))

def distance_bonus(miles: float) -> int:
    for limit, bonus in DISTANCE_TIERS:
        if miles <= limit:
            return bonus
    return 0

def score_candidate(candidate: ListingCandidate, miles: float) -> int:
    return BASE_SCORE + distance_bonus(miles) + (SOLD_BONUS if candidate.is_sold else 0)

def _contains_tokens(outer: List[str], inner: List[str]) -> bool:
    # Whole-word run match: "23 main" is not inside "123 main"
    n = len(inner)
    return any(outer[i:i + n] == inner for i in range(len(outer) - n + 1))

def find_subject(parsed: ParsedAddress, candidates: Sequence[ListingCandidate]) -> Optional[ListingCandidate]:
    """
    First candidate whose "<number> <name>" contains, or is contained in,
    the parsed subject's, compared word by word. Case-insensitive both ways
    so "Main" matches "Main Street" and vice versa.
    """
    if not parsed.street_key:
        return None
    wanted = normalize_address(parsed.street_key).split()
    for c in candidates:
        have = normalize_address(f"{c.street_number or ''} {c.street_name or ''}").split()
        if have and (_contains_tokens(have, wanted) or _contains_tokens(wanted, have)):
            return c
    return None

def rank_comparables(
    subject: "str | ParsedAddress", candidates: Sequence[ListingCandidate], cap: int
) -> tuple[List[ListingCandidate], bool]:
    """
    Score candidates by distance from the subject and sold status.

    Returns (candidates, ranked). When the subject cannot be located, or it
    has no coordinates, the input order is kept and only the cap applies.
    """
    parsed = subject if isinstance(subject, ParsedAddress) else parse_address(subject)
    subject_listing = find_subject(parsed, candidates)
    if subject_listing is None or not subject_listing.has_coordinates:
        logger.info("Relevance ranking skipped (subject %s)",
                    "has no coordinates" if subject_listing else "not found")
        return list(candidates[:cap]), False

    scored: List[ListingCandidate] = []
    for c in candidates:
        if c.has_coordinates:
            miles = haversine_miles(subject_listing.latitude, subject_listing.longitude, c.latitude, c.longitude)
            c = replace(c, distance_from_subject=round(miles, 3), relevance_score=score_candidate(c, miles))
        scored.append(c)

    # sorted() is stable: equal scores keep upstream order; unscored go last
    ranked = sorted(scored, key=lambda c: -(c.relevance_score if c.relevance_score is not None else -1))
    logger.info("Ranked %d candidates around subject %s, keeping %d", len(ranked), subject_listing.id, cap)
    return ranked[:cap], True
