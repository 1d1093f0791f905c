#!/usr/bin/env python3
"""
Unit tests for cue identity keys and the remote state indexer.

Run with:
    python -m pytest tests/test_indexer.py -v
"""

import os
import sys
import unittest

_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)

from reconcile.cue import (
    Cue,
    format_float,
    full_number,
    normalize_number,
    position_key,
)
from reconcile.indexer import extract_cue_sequence, index_cues, iter_indexed


# ---------------------------------------------------------------------------
# Number normalization
# ---------------------------------------------------------------------------

class TestNormalizeNumber(unittest.TestCase):

    def test_strings_pass_through(self):
        self.assertEqual(normalize_number("1"), "1")
        self.assertEqual(normalize_number("1.0"), "1.0")
        self.assertEqual(normalize_number("A3"), "A3")

    def test_whole_floats_keep_one_decimal(self):
        self.assertEqual(normalize_number(1.0), "1.0")
        self.assertEqual(normalize_number(0.0), "0.0")
        self.assertEqual(normalize_number(999.0), "999.0")

    def test_large_whole_floats_use_shortest_form(self):
        self.assertEqual(normalize_number(1000.0), "1000")
        self.assertEqual(normalize_number(1234567.0), "1.234567e+06")

    def test_fractional_floats(self):
        self.assertEqual(normalize_number(2.5), "2.5")
        self.assertEqual(normalize_number(10.25), "10.25")

    def test_ints_have_no_decimal(self):
        self.assertEqual(normalize_number(3), "3")

    def test_none_is_empty(self):
        self.assertEqual(normalize_number(None), "")

    def test_bool_is_not_treated_as_int(self):
        self.assertEqual(normalize_number(True), "true")


class TestFormatFloat(unittest.TestCase):

    def test_shortest_round_trip(self):
        self.assertEqual(format_float(5.0), "5")
        self.assertEqual(format_float(0.25), "0.25")
        self.assertEqual(format_float(-1.5), "-1.5")

    def test_exponent_thresholds(self):
        self.assertEqual(format_float(0.0001), "0.0001")
        self.assertEqual(format_float(0.00001), "1e-05")
        self.assertEqual(format_float(100000.0), "100000")
        self.assertEqual(format_float(1000000.0), "1e+06")


# ---------------------------------------------------------------------------
# Identity keys
# ---------------------------------------------------------------------------

class TestIdentityHelpers(unittest.TestCase):

    def test_relative_child_number(self):
        self.assertEqual(full_number("10", "1"), "10.1")

    def test_absolute_child_number(self):
        self.assertEqual(full_number("10", "3.5"), "3.5")

    def test_no_parent(self):
        self.assertEqual(full_number("", "7"), "7")
        self.assertEqual(full_number("5", ""), "")

    def test_position_key_lowercases_type(self):
        self.assertEqual(position_key("", 2, "Audio", "Hit"), "@2[audio:Hit]")
        self.assertEqual(position_key("5", 0, "Memo", ""), "5@0[memo:]")


class TestIndexCues(unittest.TestCase):

    def test_numbered_cues(self):
        index = index_cues({"cues": [
            {"number": "1", "type": "audio", "name": "Intro"},
            {"number": 2.0, "type": "audio", "name": "Outro"},
        ]})
        self.assertEqual(list(index), ["1", "2.0"])
        self.assertIsInstance(index["1"], Cue)
        self.assertEqual(index["2.0"].name, "Outro")

    def test_children_inherit_parent_number(self):
        index = index_cues({"cues": [
            {"number": "10", "type": "group", "name": "G", "cues": [
                {"number": "1", "type": "audio", "name": "a"},
                {"number": "3.5", "type": "audio", "name": "b"},
                {"type": "memo", "name": "note"},
            ]},
        ]})
        self.assertIn("10", index)
        self.assertIn("10.1", index)
        self.assertIn("3.5", index)
        self.assertIn("10@2[memo:note]", index)

    def test_unnumbered_parent_passes_empty_prefix(self):
        index = index_cues({"cues": [
            {"type": "list", "name": "Main", "cues": [
                {"type": "audio", "name": "Hit"},
                {"number": "4", "type": "audio", "name": "Numbered"},
            ]},
        ]})
        self.assertEqual(sorted(index), ["4", "@0[audio:Hit]", "@0[list:Main]"])

    def test_positional_duplicates_get_distinct_keys(self):
        index = index_cues({"cues": [
            {"type": "audio", "name": "Hit"},
            {"type": "audio", "name": "Hit"},
        ]})
        self.assertEqual(list(index), ["@0[audio:Hit]", "@1[audio:Hit]"])

    def test_later_duplicate_number_wins(self):
        index = index_cues({"cues": [
            {"number": "1", "type": "audio", "name": "first"},
            {"number": "1", "type": "audio", "name": "second"},
        ]})
        self.assertEqual(len(index), 1)
        self.assertEqual(index["1"].name, "second")

    def test_none_and_empty_trees(self):
        self.assertEqual(index_cues(None), {})
        self.assertEqual(index_cues({}), {})
        self.assertEqual(index_cues({"cues": []}), {})

    def test_non_dict_entries_are_ignored(self):
        index = index_cues({"cues": ["junk", None, {"number": "1", "type": "memo"}]})
        self.assertEqual(list(index), ["1"])


class TestTreeShapes(unittest.TestCase):

    def test_workspace_wrapper(self):
        tree = {"workspace": {"cues": [{"number": "1", "type": "memo"}]}}
        self.assertEqual(list(index_cues(tree)), ["1"])

    def test_cue_lists_reply_is_concatenated(self):
        tree = {"data": [
            {"uniqueID": "L1", "name": "One", "cues": [{"type": "audio", "name": "x"}]},
            {"uniqueID": "L2", "name": "Two", "cues": [{"type": "audio", "name": "y"}]},
        ]}
        index = index_cues(tree)
        # positions count across lists
        self.assertEqual(list(index), ["@0[audio:x]", "@1[audio:y]"])

    def test_wrapped_data_dict(self):
        tree = {"data": {
            "cueLists": [{"cues": [{"number": "1", "type": "memo"}]}],
            "cues": [{"number": "2", "type": "memo"}],
        }}
        self.assertEqual(list(index_cues(tree)), ["1", "2"])

    def test_lists_without_cues(self):
        tree = {"data": [{"uniqueID": "L1", "name": "Empty"}]}
        self.assertEqual(extract_cue_sequence(tree), [])

    def test_iter_indexed_yields_parent_numbers(self):
        tree = {"cues": [{"number": "5", "type": "group", "cues": [{"type": "memo", "name": "n"}]}]}
        walked = [(key, parent) for key, _cue, parent in iter_indexed(tree)]
        self.assertEqual(walked, [("5", ""), ("5@0[memo:n]", "5")])


if __name__ == "__main__":
    unittest.main()
