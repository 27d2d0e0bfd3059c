import unittest
from decimal import Decimal

from flowstream.daemon.billing import (
    accrued_cost,
    can_afford,
    effective_rate,
    refund,
    remaining_deposit,
    target_usage,
    to_base_units,
    to_display,
)
from flowstream.daemon.errors import InvalidArgument


class BaseUnitTests(unittest.TestCase):
    def test_decimal_text_converts_exactly(self):
        self.assertEqual(to_base_units("5.0", 9), 5_000_000_000)
        self.assertEqual(to_base_units("0.000000001", 9), 1)
        self.assertEqual(to_base_units(3, 2), 300)
        self.assertEqual(to_base_units(Decimal("1.25"), 2), 125)

    def test_excess_precision_rejected(self):
        with self.assertRaises(InvalidArgument):
            to_base_units("0.0000000001", 9)

    def test_floats_and_garbage_rejected(self):
        with self.assertRaises(InvalidArgument):
            to_base_units(0.1, 9)
        with self.assertRaises(InvalidArgument):
            to_base_units("five", 9)
        with self.assertRaises(InvalidArgument):
            to_base_units("NaN", 9)

    def test_display_is_last_mile_only(self):
        self.assertEqual(to_display(12_000, 3), 12.0)
        self.assertEqual(to_display(84_000_000, 9), 0.084)


class RateTests(unittest.TestCase):
    def test_rate_per_display_unit_becomes_integer_per_raw_unit(self):
        self.assertEqual(effective_rate("0.007", currency_decimals=9, usage_decimals=3), 7_000)
        self.assertEqual(effective_rate("1", currency_decimals=6, usage_decimals=0), 1_000_000)
        self.assertEqual(effective_rate("0", currency_decimals=9, usage_decimals=3), 0)

    def test_unrepresentable_rate_rejected(self):
        with self.assertRaises(InvalidArgument):
            effective_rate("0.0000001", currency_decimals=6, usage_decimals=3)
        with self.assertRaises(InvalidArgument):
            effective_rate("-1", currency_decimals=9, usage_decimals=3)


class CostTests(unittest.TestCase):
    def test_accrual_is_integer_product(self):
        self.assertEqual(accrued_cost(12_000, 7_000), 84_000_000)
        self.assertEqual(remaining_deposit(5_000_000_000, 12_000, 7_000), 4_916_000_000)

    def test_affordability_boundary(self):
        self.assertTrue(can_afford(35_000, 5, 7_000))
        self.assertFalse(can_afford(35_000, 6, 7_000))

    def test_refund_plus_cost_equals_deposit(self):
        for deposit, cost in ((5_000_000_000, 84_000_000), (35_000, 35_000), (1, 0)):
            self.assertEqual(refund(deposit, cost) + cost, deposit)

    def test_refund_rejects_cost_above_deposit(self):
        with self.assertRaises(ValueError):
            refund(100, 101)
        with self.assertRaises(ValueError):
            refund(100, -1)

    def test_target_usage_matches_schedule(self):
        # 120 s at 10 ms per tick, one unit per tick
        self.assertEqual(target_usage(120_000, 10, 1), 12_000)
        self.assertEqual(target_usage(1_000, 300, 5), 15)
        with self.assertRaises(InvalidArgument):
            target_usage(1_000, 0, 1)


if __name__ == "__main__":
    unittest.main()
