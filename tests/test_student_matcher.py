import os
import sys
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from billing_models import Ambiguous, Matched, NotFound, RosterEntry
from student_matcher import (
    find_suggestions,
    get_matcher,
    match_exact_name_trust,
    match_room_sensitive,
    match_student,
    normalize_room,
)


def entry(student_id, first, last, room="Room 5", year="7"):
    return RosterEntry(student_id, first, last, room, year)


class TestExactNameTrust(unittest.TestCase):
    def test_single_exact_name_ignores_room_and_year(self):
        roster = [entry("1.1111", "Jane", "Smith", "Room 5", "7"), entry("2.1111", "Tom", "Brown")]
        result = match_exact_name_trust("jane", "SMITH", "Room 99", "12", roster)
        self.assertIsInstance(result, Matched)
        self.assertEqual(result.student_id, "1.1111")

    def test_same_name_resolved_by_year(self):
        roster = [entry("1.1111", "Jane", "Smith", "Room 5", "7"), entry("2.1111", "Jane", "Smith", "Room 5", "8")]
        result = match_exact_name_trust("Jane", "Smith", "Room 1", "8", roster)
        self.assertEqual(result, Matched("2.1111", roster[1]))

    def test_same_name_without_year_match_is_ambiguous(self):
        roster = [entry("1.1111", "Jane", "Smith", "Room 5", "7"), entry("2.1111", "Jane", "Smith", "Room 6", "8")]
        result = match_exact_name_trust("Jane", "Smith", "Room 5", "9", roster)
        self.assertIsInstance(result, Ambiguous)
        self.assertEqual(len(result.candidates), 2)
        self.assertIn("exact name match (2 found)", result.reason)

    def test_same_name_and_year_resolved_by_room(self):
        roster = [entry("1.1111", "Jane", "Smith", "Room 5", "7"), entry("2.1111", "Jane", "Smith", "Room 6", "7")]
        result = match_exact_name_trust("Jane", "Smith", "room 6", "7", roster)
        self.assertEqual(result.student_id, "2.1111")

    def test_same_name_year_and_room_is_ambiguous(self):
        roster = [entry("1.1111", "Jane", "Smith"), entry("2.1111", "Jane", "Smith")]
        result = match_exact_name_trust("Jane", "Smith", "Room 5", "7", roster)
        self.assertIsInstance(result, Ambiguous)

    def test_fuzzy_threshold_is_inclusive(self):
        roster = [entry("1.1111", "Jane", "Smxyz")]
        result = match_exact_name_trust("Jane", "Smith", "Room 5", "7", roster)
        self.assertIsInstance(result, Matched)
        self.assertAlmostEqual(result.similarity, 0.7)

    def test_fuzzy_below_threshold_is_not_found(self):
        roster = [entry("1.1111", "Jane", "Sxyzw")]
        result = match_exact_name_trust("Jane", "Smith", "Room 5", "7", roster)
        self.assertIsInstance(result, NotFound)
        self.assertEqual(result.reason, "No similar names found in matching room/year")

    def test_fuzzy_only_searches_same_room_and_year(self):
        roster = [entry("1.1111", "Jane", "Smyth", "Room 6", "7")]
        result = match_exact_name_trust("Jane", "Smith", "Room 5", "7", roster)
        self.assertIsInstance(result, NotFound)
        self.assertEqual(result.reason, "No students found in matching room/year")
        self.assertEqual([s.entry.student_id for s in result.suggestions], ["1.1111"])

    def test_several_fuzzy_hits_are_ambiguous(self):
        roster = [entry("1.1111", "Jane", "Smyth"), entry("2.1111", "Jane", "Smithe")]
        result = match_exact_name_trust("Jane", "Smith", "Room 5", "7", roster)
        self.assertIsInstance(result, Ambiguous)
        self.assertIn("2 students >= 70% similar", result.reason)


class TestRoomSensitive(unittest.TestCase):
    def test_single_name_in_same_room(self):
        roster = [entry("1.1111", "Jane", "Smith", "Room 5")]
        result = match_room_sensitive("Jane", "Smith", "5", "7", roster)
        self.assertIsInstance(result, Matched)

    def test_single_name_in_other_room_needs_review(self):
        roster = [entry("1.1111", "Jane", "Smith", "Room 5")]
        result = match_room_sensitive("Jane", "Smith", "Room 6", "7", roster)
        self.assertIsInstance(result, Ambiguous)
        self.assertEqual(result.reason, "Name matches but room differs (Expected: 6, Found: 5)")

    def test_no_name_hit_gives_suggestions_above_eighty_percent(self):
        roster = [entry("1.1111", "Jane", "Smyth"), entry("2.1111", "Jane", "Smxyz")]
        result = match_room_sensitive("Jane", "Smith", "Room 5", "7", roster)
        self.assertIsInstance(result, NotFound)
        self.assertEqual([s.entry.student_id for s in result.suggestions], ["1.1111"])

    def test_duplicate_names_narrowed_by_room(self):
        roster = [entry("1.1111", "Jane", "Smith", "Room 5", "7"), entry("2.1111", "Jane", "Smith", "Room 6", "7")]
        result = match_room_sensitive("Jane", "Smith", "Room 6", "7", roster)
        self.assertEqual(result.student_id, "2.1111")


class TestSuggestions(unittest.TestCase):
    def test_sorted_best_first_and_limited(self):
        roster = [
            entry("1.1111", "Jane", "Smithson"),
            entry("2.1111", "Jane", "Smith"),
            entry("3.1111", "Jane", "Smyth"),
            entry("4.1111", "Zed", "Xylophone"),
        ]
        suggestions = find_suggestions("Jane", "Smith", roster, threshold=0.6, limit=2)
        self.assertEqual([s.entry.student_id for s in suggestions], ["2.1111", "3.1111"])
        self.assertEqual(suggestions[0].details, "Jane Smith (Room 5, Year 7) - 100% match")


def test_normalize_room_strips_prefix():
    assert normalize_room("Room 12") == "12"
    assert normalize_room("ROOM12") == "12"
    assert normalize_room(" r12 ") == "r12"


def test_match_student_dispatches_policy():
    roster = [entry("1.1111", "Jane", "Smith", "Room 5")]
    assert isinstance(match_student("Jane", "Smith", "Room 6", "7", roster), Matched)
    assert isinstance(match_student("Jane", "Smith", "Room 6", "7", roster, policy="room_sensitive"), Ambiguous)


def test_unknown_policy():
    try:
        get_matcher("coin_flip")
    except ValueError as e:
        assert "coin_flip" in str(e)
    else:
        raise AssertionError("expected ValueError")
