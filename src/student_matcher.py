"""
Resolve a billing row's (first name, last name, room, year) to a roster entry.

Two policies exist because the SMS exports disagree on how far a single exact
name hit can be trusted:

* ``exact_name_trust`` - a unique exact name wins regardless of room/year; when
  no exact name exists the room+year group is fuzzy searched.
* ``room_sensitive`` - a unique exact name still has to sit in the same room,
  otherwise the row goes to manual review.
"""

import logging
import re
from typing import Callable, Dict, Iterable, Tuple

from billing_models import Ambiguous, Matched, MatchResult, NotFound, RosterEntry, Suggestion
from similarity import name_similarity

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.7
SUGGESTION_THRESHOLD = 0.6
SUGGESTION_LIMIT = 5

_ROOM_PREFIX_RE = re.compile(r"^room\s*", re.IGNORECASE)


def normalize_room(room: str) -> str:
    return _ROOM_PREFIX_RE.sub("", (room or "").strip()).strip().lower()


def _display_room(room: str) -> str:
    return _ROOM_PREFIX_RE.sub("", (room or "").strip()).strip()


def normalize_year(year) -> str:
    return str(year if year is not None else "").strip()


def _normalize_name(name: str) -> str:
    return (name or "").strip().lower()


def _same_name(entry: RosterEntry, first: str, last: str) -> bool:
    return _normalize_name(entry.first_name) == first and _normalize_name(entry.last_name) == last


def find_suggestions(
    first_name: str,
    last_name: str,
    roster: Iterable[RosterEntry],
    threshold: float = SUGGESTION_THRESHOLD,
    limit: int = SUGGESTION_LIMIT,
) -> Tuple[Suggestion, ...]:
    """Roster entries whose names look like the given one, best first."""
    scored = []
    for entry in roster:
        score = name_similarity(first_name, last_name, entry.first_name, entry.last_name)
        if score >= threshold:
            scored.append(Suggestion(entry, score))
    scored.sort(key=lambda s: s.similarity, reverse=True)
    return tuple(scored[:limit])


def match_exact_name_trust(
    first_name: str,
    last_name: str,
    room: str,
    year: str,
    roster: Iterable[RosterEntry],
    match_threshold: float = MATCH_THRESHOLD,
    suggestion_threshold: float = SUGGESTION_THRESHOLD,
    suggestion_limit: int = SUGGESTION_LIMIT,
) -> MatchResult:
    roster = list(roster)
    first = _normalize_name(first_name)
    last = _normalize_name(last_name)
    room_key = normalize_room(room)
    year_key = normalize_year(year)

    name_hits = [e for e in roster if _same_name(e, first, last)]
    if len(name_hits) == 1:
        return Matched(name_hits[0].student_id, name_hits[0])

    if len(name_hits) > 1:
        year_hits = [e for e in name_hits if normalize_year(e.year_level) == year_key]
        if len(year_hits) == 1:
            return Matched(year_hits[0].student_id, year_hits[0])
        if not year_hits:
            return Ambiguous(
                tuple(name_hits),
                f"Multiple students with exact name match ({len(name_hits)} found)",
            )
        room_hits = [e for e in year_hits if normalize_room(e.room) == room_key]
        if len(room_hits) == 1:
            return Matched(room_hits[0].student_id, room_hits[0])
        return Ambiguous(
            tuple(room_hits or year_hits),
            f"Multiple students with same name and year ({len(year_hits)} found)",
        )

    pool = [
        e for e in roster
        if normalize_room(e.room) == room_key and normalize_year(e.year_level) == year_key
    ]
    if not pool:
        return NotFound(
            "No students found in matching room/year",
            find_suggestions(first_name, last_name, roster, suggestion_threshold, suggestion_limit),
        )

    scored = [
        (entry, name_similarity(first_name, last_name, entry.first_name, entry.last_name))
        for entry in pool
    ]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    close = [(entry, score) for entry, score in scored if score >= match_threshold]

    if not close:
        return NotFound(
            "No similar names found in matching room/year",
            find_suggestions(first_name, last_name, roster, suggestion_threshold, suggestion_limit),
        )
    if len(close) == 1:
        entry, score = close[0]
        logger.debug("Fuzzy matched %s %s to %s (%.0f%%)", first_name, last_name, entry.student_id, score * 100)
        return Matched(entry.student_id, entry, score)
    return Ambiguous(
        tuple(entry for entry, _ in close),
        f"Multiple similar matches found in room/year ({len(close)} students >= {round(match_threshold * 100)}% similar)",
    )


def match_room_sensitive(
    first_name: str,
    last_name: str,
    room: str,
    year: str,
    roster: Iterable[RosterEntry],
    match_threshold: float = MATCH_THRESHOLD,
    suggestion_threshold: float = 0.8,
    suggestion_limit: int = SUGGESTION_LIMIT,
) -> MatchResult:
    roster = list(roster)
    first = _normalize_name(first_name)
    last = _normalize_name(last_name)
    room_key = normalize_room(room)
    year_key = normalize_year(year)

    name_hits = [e for e in roster if _same_name(e, first, last)]
    if not name_hits:
        return NotFound(
            "Student not found on seed roll",
            find_suggestions(first_name, last_name, roster, suggestion_threshold, suggestion_limit),
        )

    if len(name_hits) == 1:
        entry = name_hits[0]
        if normalize_room(entry.room) == room_key:
            return Matched(entry.student_id, entry)
        return Ambiguous(
            (entry,),
            f"Name matches but room differs (Expected: {_display_room(room)}, Found: {_display_room(entry.room)})",
        )

    year_hits = [e for e in name_hits if normalize_year(e.year_level) == year_key]
    if len(year_hits) == 1 and normalize_room(year_hits[0].room) == room_key:
        return Matched(year_hits[0].student_id, year_hits[0])

    room_hits = [e for e in name_hits if normalize_room(e.room) == room_key]
    if len(room_hits) == 1:
        return Matched(room_hits[0].student_id, room_hits[0])

    return Ambiguous(
        tuple(room_hits or name_hits),
        f"Multiple matches found ({len(name_hits)} students with same name)",
    )


MatcherFn = Callable[..., MatchResult]

MATCHER_POLICIES: Dict[str, MatcherFn] = {
    "exact_name_trust": match_exact_name_trust,
    "room_sensitive": match_room_sensitive,
}


def get_matcher(policy: str) -> MatcherFn:
    try:
        return MATCHER_POLICIES[policy]
    except KeyError:
        raise ValueError(f"Unknown matcher policy: {policy}") from None


def match_student(
    first_name: str,
    last_name: str,
    room: str,
    year: str,
    roster: Iterable[RosterEntry],
    policy: str = "exact_name_trust",
    **thresholds,
) -> MatchResult:
    return get_matcher(policy)(first_name, last_name, room, year, roster, **thresholds)

