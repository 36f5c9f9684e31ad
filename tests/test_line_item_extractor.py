#!/usr/bin/env python3
"""
Tests for number parsing and line item construction.
"""

import sys
import unittest
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from quote_intake.line_item_extractor import (
    extract_line_item_from_row,
    format_line_items_for_response,
    is_data_row,
    is_header_row,
    make_item_id,
    parse_number,
)

MAPPING = {"item_identifier": 0, "description": 1, "quantity": 2, "unit_price": 3, "total_price": 4}


class TestParseNumber(unittest.TestCase):

    def test_parse_number(self):
        test_cases = [
            ("2", Decimal("2")),
            ("$5.00", Decimal("5.00")),
            ("$1,234.50", Decimal("1234.50")),
            ("€ 99.9", Decimal("99.9")),
            ("10 pcs", Decimal("10")),
            ("-3.5", Decimal("-3.5")),
            ("", None),
            ("   ", None),
            ("N/A", None),
            (None, None),
        ]
        for value, expected in test_cases:
            with self.subTest(value=value):
                self.assertEqual(parse_number(value), expected)


class TestExtractLineItemFromRow(unittest.TestCase):

    def test_full_row(self):
        row = ["A-100", "Widget", "2", "$5.00", "$10.00"]
        item = extract_line_item_from_row(row, MAPPING, position=1, row_index=0)

        self.assertEqual(item.item_number, "A-100")
        self.assertEqual(item.part_number, "A-100")
        self.assertEqual(item.description, "Widget")
        self.assertEqual(item.quantity, Decimal("2"))
        self.assertEqual(item.unit_price, Decimal("5.00"))
        self.assertEqual(item.total, Decimal("10.00"))
        self.assertEqual(item.uom, "EA")
        self.assertEqual(item.raw_row, "A-100 | Widget | 2 | $5.00 | $10.00")
        self.assertEqual(item.position, 1)
        self.assertEqual(item.source_line, 1)

    def test_missing_identifier_uses_position(self):
        item = extract_line_item_from_row(["", "Gasket", "1", "", ""], MAPPING, position=3, row_index=4)
        self.assertEqual(item.item_number, "ITEM-3")
        self.assertEqual(item.part_number, "PART-3")
        self.assertEqual(item.description, "Gasket")
        self.assertIsNone(item.unit_price)
        self.assertEqual(item.source_line, 5)

    def test_missing_description_uses_identifier(self):
        item = extract_line_item_from_row(["B-7", "", "4", "1.00", "4.00"], MAPPING, position=1, row_index=0)
        self.assertEqual(item.description, "B-7")

    def test_row_without_identity_is_skipped(self):
        self.assertIsNone(extract_line_item_from_row(["", "", "1", "2.00", "2.00"], MAPPING, 1, 0))

    def test_short_row(self):
        item = extract_line_item_from_row(["C-1", "Clip"], MAPPING, position=2, row_index=1)
        self.assertEqual(item.description, "Clip")
        self.assertIsNone(item.quantity)
        self.assertIsNone(item.total)

    def test_ids_are_deterministic(self):
        row = ["A-100", "Widget", "2", "$5.00", "$10.00"]
        first = extract_line_item_from_row(row, MAPPING, 1, 0)
        second = extract_line_item_from_row(row, MAPPING, 1, 0)
        self.assertEqual(first.id, second.id)
        self.assertNotEqual(make_item_id(1, "a"), make_item_id(2, "a"))


class TestRowFilters(unittest.TestCase):

    def test_is_header_row(self):
        self.assertTrue(is_header_row(["Item No", "Description", "Qty"]))
        self.assertFalse(is_header_row(["1", "Widget", "2"]))

    def test_is_data_row(self):
        self.assertTrue(is_data_row(["", "Widget", ""]))
        self.assertFalse(is_data_row(["", " ", ""]))
        self.assertFalse(is_data_row(["---", "---"]))


class TestFormatLineItems(unittest.TestCase):

    def test_response_shape(self):
        item = extract_line_item_from_row(["A-100", "Widget  ", "2", "$5.00", "$10.00"], MAPPING, 1, 0)
        formatted = format_line_items_for_response([item])

        self.assertEqual(len(formatted), 1)
        entry = formatted[0]
        self.assertEqual(entry["item_number"], "A-100")
        self.assertEqual(entry["quantity"], 2.0)
        self.assertEqual(entry["unit_price"], 5.0)
        self.assertEqual(entry["raw_text"], "Widget")
        self.assertEqual(entry["normalized_text"], "widget")


if __name__ == "__main__":
    unittest.main()
