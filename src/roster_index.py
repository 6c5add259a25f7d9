"""
Seed roll (student roster) loading.

Two input shapes are accepted: the JSON search export
(``{"rtype": "roll_student_search_result", "matches": [...]}``) and pasted
tab/comma separated text where each student line starts with a ``student`` tag.
"""

import json
import logging
import re
from typing import Dict, Iterable, Iterator, List, Optional

from billing_models import RosterEntry
from errors import EmptyRosterError

logger = logging.getLogger(__name__)

ROSTER_JSON_RTYPE = "roll_student_search_result"
DOTTED_ID_RE = re.compile(r"^\d+\.\d+$")
_URL_MARKERS = ("://", "moz-extension")


class RosterIndex:
    """Read-only lookup over the roster entries of one conversion run."""

    def __init__(self, entries: Iterable[RosterEntry]):
        self._entries: List[RosterEntry] = []
        self._by_id: Dict[str, RosterEntry] = {}
        self._base_ids: Dict[str, str] = {}

        for entry in entries:
            if entry.student_id in self._by_id:
                continue
            self._entries.append(entry)
            self._by_id[entry.student_id] = entry
            if "." in entry.student_id:
                self._base_ids[entry.base_id] = entry.student_id

        if not self._entries:
            raise EmptyRosterError()

    @classmethod
    def from_text(cls, text: str) -> "RosterIndex":
        text = (text or "").strip()
        entries = _parse_json(text)
        if entries is None:
            entries = _parse_delimited(text)
            logger.info("Parsed %d students from delimited seed roll", len(entries))
        else:
            logger.info("Parsed %d students from JSON seed roll", len(entries))
        index = cls(entries)
        logger.info("Created ID mapping for %d base IDs", len(index._base_ids))
        return index

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RosterEntry]:
        return iter(self._entries)

    def __contains__(self, student_id: str) -> bool:
        return (student_id or "").strip() in self._by_id

    @property
    def entries(self) -> List[RosterEntry]:
        return list(self._entries)

    @property
    def ids(self) -> frozenset:
        return frozenset(self._by_id)

    @property
    def base_id_map(self) -> Dict[str, str]:
        return dict(self._base_ids)

    def get(self, student_id: str) -> Optional[RosterEntry]:
        return self._by_id.get((student_id or "").strip())

    def full_id_for(self, base_id: str) -> Optional[str]:
        return self._base_ids.get((base_id or "").strip())


def _parse_json(text: str) -> Optional[List[RosterEntry]]:
    """Return entries for a recognised JSON export, or None to fall back to delimited text."""
    try:
        data = json.loads(text)
    except ValueError:
        return None
    if not isinstance(data, dict) or data.get("rtype") != ROSTER_JSON_RTYPE:
        return None
    matches = data.get("matches")
    if not isinstance(matches, list):
        return None

    entries = []
    for student in matches:
        if not isinstance(student, dict):
            continue
        full_id = str(student.get("student_id_ext") or student.get("student_id") or "").strip()
        if not full_id or any(marker in full_id for marker in _URL_MARKERS):
            continue
        if not DOTTED_ID_RE.match(full_id):
            continue
        entries.append(RosterEntry(
            student_id=full_id,
            first_name=str(student.get("first_names") or "").strip(),
            last_name=str(student.get("surname") or "").strip(),
            room=str(student.get("class_name") or "").strip(),
            year_level=str(student.get("year_level") or "").strip(),
        ))
    return entries


def _parse_delimited(text: str) -> List[RosterEntry]:
    entries = []
    for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        line = line.strip()
        if not line:
            continue
        columns = line.split("\t")
        if len(columns) == 1:
            columns = line.split(",")
        # caregiver lines and headings carry another tag
        if columns[0].strip().lower() != "student" or len(columns) < 6:
            continue
        student_id, first_name, last_name, room, year_level = (c.strip() for c in columns[1:6])
        if not (student_id and first_name and last_name):
            continue
        entries.append(RosterEntry(student_id, first_name, last_name, room, year_level))
    return entries
