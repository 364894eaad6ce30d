# tests/test_checker_config.py

"""Tests for the stored per-checker tuning document."""

import json
import unittest

from kindle_bot.config.checker_config import (
    CheckerConfigs,
    parse_checker_configs,
)
from kindle_bot.config.settings import ConfigError, Settings


class TestParseCheckerConfigs(unittest.TestCase):
    """JSON to dataclass mapping."""

    def test_full_document(self) -> None:
        raw = json.dumps(
            {
                "ReportFailure": False,
                "SaleChecker": {
                    "Enabled": False,
                    "GistID": "abc",
                    "GistFilename": "sale.md",
                    "ExecutionIntervalMinutes": 30,
                    "SegmentSize": 20,
                    "GetItemsPaapiRetryCount": 3,
                },
                "NewReleaseChecker": {
                    "CycleDays": 2,
                    "SearchItemsInitialRetrySeconds": 1.5,
                },
                "PaperToKindleChecker": {"GistID": "p2k"},
            }
        )
        configs = parse_checker_configs(raw)

        self.assertFalse(configs.report_failure)
        self.assertFalse(configs.sale_checker.enabled)
        self.assertEqual(configs.sale_checker.gist_id, "abc")
        self.assertEqual(configs.sale_checker.execution_interval_minutes, 30)
        self.assertEqual(configs.sale_checker.segment_size, 20)
        self.assertEqual(configs.sale_checker.get_items_retry_count, 3)
        self.assertEqual(configs.new_release_checker.cycle_days, 2)
        self.assertEqual(
            configs.new_release_checker.search_items_initial_retry_seconds,
            1.5,
        )
        self.assertEqual(configs.paper_to_kindle_checker.gist_id, "p2k")

    def test_missing_sections_use_defaults(self) -> None:
        self.assertEqual(parse_checker_configs(b"{}"), CheckerConfigs())

    def test_zero_values_fall_back_to_defaults(self) -> None:
        """Unused numeric knobs left at 0 keep the built-in default."""
        configs = parse_checker_configs(
            json.dumps({"SaleChecker": {"SegmentSize": 0}})
        )
        self.assertEqual(
            configs.sale_checker.segment_size, Settings.SEGMENT_SIZE
        )

    def test_whole_float_counts_become_ints(self) -> None:
        """A count written as 3.0 is usable as an attempt count."""
        configs = parse_checker_configs(
            json.dumps(
                {
                    "SaleChecker": {
                        "GetItemsPaapiRetryCount": 3.0,
                        "SegmentSize": 20.0,
                        "GetItemsInitialRetrySeconds": 1.5,
                    },
                    "NewReleaseChecker": {"SearchItemsPaapiRetryCount": 4.0},
                }
            )
        )
        sale = configs.sale_checker
        self.assertIsInstance(sale.get_items_retry_count, int)
        self.assertEqual(sale.get_items_retry_count, 3)
        self.assertIsInstance(sale.segment_size, int)
        self.assertEqual(sale.get_items_initial_retry_seconds, 1.5)
        self.assertIsInstance(
            configs.new_release_checker.search_items_retry_count, int
        )
        self.assertEqual(
            list(range(1, sale.get_items_retry_count + 1)), [1, 2, 3]
        )

    def test_fractional_count_rejected(self) -> None:
        with self.assertRaises(ConfigError):
            parse_checker_configs(
                json.dumps({"SaleChecker": {"GetItemsPaapiRetryCount": 2.5}})
            )

    def test_unknown_keys_ignored(self) -> None:
        configs = parse_checker_configs(
            json.dumps({"SaleChecker": {"Bogus": 1}, "Other": {}})
        )
        self.assertEqual(configs.sale_checker, CheckerConfigs().sale_checker)

    def test_invalid_json_raises(self) -> None:
        with self.assertRaises(ConfigError):
            parse_checker_configs(b"{not json")

    def test_non_object_raises(self) -> None:
        with self.assertRaises(ConfigError):
            parse_checker_configs(b"[1, 2]")


if __name__ == "__main__":
    unittest.main()
