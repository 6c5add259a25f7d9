import json
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import pytest

from errors import ConfigError, EmptyRosterError
from roster_index import RosterIndex


def _json_roster(*matches):
    return json.dumps({"rtype": "roll_student_search_result", "matches": list(matches)})


def test_json_roster_parses_students():
    text = _json_roster(
        {"student_id_ext": "1234.5678", "first_names": "Jane", "surname": "Smith", "class_name": "Room 5", "year_level": 7},
        {"student_id_ext": "2222.5678", "first_names": "Tama", "surname": "Ngata", "class_name": "R6", "year_level": "8"},
    )
    roster = RosterIndex.from_text(text)

    assert len(roster) == 2
    jane = roster.get("1234.5678")
    assert jane.first_name == "Jane"
    assert jane.room == "Room 5"
    assert jane.year_level == "7"
    assert roster.full_id_for("2222") == "2222.5678"


def test_json_roster_rejects_bad_ids():
    text = _json_roster(
        {"student_id_ext": "moz-extension://abc/1.2", "first_names": "X", "surname": "Y"},
        {"student_id_ext": "https://x/1.2", "first_names": "X", "surname": "Y"},
        {"student_id_ext": "12345", "first_names": "No", "surname": "Suffix"},
        {"student_id": "99.1234", "first_names": "", "surname": ""},
    )
    roster = RosterIndex.from_text(text)

    assert roster.ids == frozenset({"99.1234"})


def test_delimited_roster_tab_and_comma():
    text = "\n".join([
        "type\tid\tfirst\tlast\troom\tyear",
        "student\t1001.4321\tAroha\tWilliams\tRoom 3\t5",
        "caregiver\t1001.4321\tMere\tWilliams\t\t",
        "student,1002.4321,Sam,Lee,Room 4,6",
        "student\t1003.4321\t\tMissingFirst\tRoom 4\t6",
        "student\t1004",
    ])
    roster = RosterIndex.from_text(text)

    assert [e.student_id for e in roster] == ["1001.4321", "1002.4321"]
    assert "1002.4321" in roster
    assert roster.get("1002.4321").room == "Room 4"


def test_duplicate_ids_keep_first_entry():
    text = "student\t1.1111\tA\tOne\tR1\t1\nstudent\t1.1111\tB\tTwo\tR2\t2"
    roster = RosterIndex.from_text(text)
    assert len(roster) == 1
    assert roster.get("1.1111").first_name == "A"


def test_empty_roster_is_a_config_error():
    with pytest.raises(EmptyRosterError) as exc:
        RosterIndex.from_text("no students here")
    assert isinstance(exc.value, ConfigError)
    assert "No students found" in str(exc.value)
