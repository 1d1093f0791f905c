#!/usr/bin/env python3
"""
Unit tests for the field-level cue comparator.

Run with:
    python -m pytest tests/test_comparator.py -v
"""

import os
import sys
import unittest

_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from reconcile.comparator import (
    compare_boolean,
    compare_detailed,
    fields_equivalent,
    normalize_property,
    strip_diff_prefix,
)
from reconcile.cue import Cue


def _diff(a, b):
    return compare_detailed(Cue.from_dict(a), Cue.from_dict(b))


class TestNormalizeProperty(unittest.TestCase):

    def test_scalars(self):
        self.assertEqual(normalize_property(None), "")
        self.assertEqual(normalize_property("x"), "x")
        self.assertEqual(normalize_property(True), "true")
        self.assertEqual(normalize_property(False), "false")
        self.assertEqual(normalize_property(3), "3")
        self.assertEqual(normalize_property(2.0), "2")
        self.assertEqual(normalize_property(0.5), "0.5")


class TestEquivalenceRules(unittest.TestCase):

    def test_name_difference_is_formatted(self):
        self.assertEqual(_diff({"name": "A"}, {"name": "B"}), {"name": "'A' -> 'B'"})

    def test_type_is_case_insensitive(self):
        self.assertEqual(_diff({"type": "Audio"}, {"type": "audio"}), {})
        self.assertIn("type", _diff({"type": "audio"}, {"type": "video"}))

    def test_duration_zero_equals_empty(self):
        self.assertEqual(_diff({"duration": "0"}, {}), {})
        self.assertEqual(_diff({"duration": 5.0}, {"duration": "5"}), {})
        self.assertIn("duration", _diff({"duration": "5"}, {"duration": "6"}))

    def test_file_target_compares_basename(self):
        self.assertEqual(_diff({"fileTarget": "audio/intro.wav"},
                               {"fileTarget": "/Volumes/Show/audio/intro.wav"}), {})
        self.assertIn("fileTarget", _diff({"fileTarget": "intro.wav"}, {"fileTarget": "outro.wav"}))

    def test_file_target_needs_both_sides(self):
        self.assertEqual(_diff({"fileTarget": "intro.wav"}, {}), {})

    def test_cue_target_number_exact_when_both_present(self):
        self.assertIn("cueTargetNumber", _diff({"cueTargetNumber": "1"}, {"cueTargetNumber": "2"}))
        self.assertEqual(_diff({"cueTargetNumber": "1"}, {}), {})
        self.assertEqual(_diff({"cueTargetNumber": ""}, {"cueTargetNumber": ""}), {})

    def test_color_none_equals_empty(self):
        self.assertEqual(_diff({}, {"colorName": "none"}), {})
        self.assertIn("colorName", _diff({"colorName": "red"}, {"colorName": "none"}))

    def test_operational_fields_never_differ(self):
        self.assertEqual(_diff({"armed": True}, {"armed": False}), {})
        self.assertEqual(_diff({"flagged": "true"}, {"flagged": "false"}), {})

    def test_notes(self):
        self.assertEqual(_diff({"notes": "a"}, {"notes": ""}), {"notes": "'a' -> ''"})

    def test_uncompared_fields_are_ignored(self):
        self.assertEqual(_diff({"uniqueID": "X", "preWait": 2}, {"uniqueID": "Y"}), {})

    def test_fields_equivalent_directly(self):
        self.assertTrue(fields_equivalent("colorName", "", "none"))
        self.assertFalse(fields_equivalent("fileTarget", "", "a.wav"))
        self.assertTrue(fields_equivalent("armed", "true", "false"))


class TestCompareBoolean(unittest.TestCase):

    def test_identical(self):
        cue = Cue.from_dict({"number": "1", "name": "A", "type": "audio"})
        self.assertTrue(compare_boolean(cue, cue))

    def test_different(self):
        a = Cue.from_dict({"name": "A"})
        b = Cue.from_dict({"name": "B"})
        self.assertFalse(compare_boolean(a, b))


class TestStripDiffPrefix(unittest.TestCase):

    def test_prefixes(self):
        self.assertEqual(strip_diff_prefix("source_vs_cache_name"), "name")
        self.assertEqual(strip_diff_prefix("cache_vs_current_notes"), "notes")
        self.assertEqual(strip_diff_prefix("name"), "name")


if __name__ == "__main__":
    unittest.main()
