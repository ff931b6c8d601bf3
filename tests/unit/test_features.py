"""
Test Suite: Feature Builder
Monthly aggregation, feature vectors, leakage-safe samples and fingerprints
"""

import random

import pytest

from neural_core.features import (
    aggregate_monthly_signals,
    build_dataset,
    build_feature_values,
    compute_fingerprint,
    fnv1a_32,
    resolve_budget_group,
    resolve_checkpoint_indexes,
)
from neural_core.types import MonthlySignal, NEURAL_BRAIN_VECTOR_SIZE
from tests.factories import expense, income


class TestMonthlyAggregation:
    """Bucketing of transactions into calendar months"""

    def test_months_are_sorted_and_summed(self, four_month_history, categories):
        months, _, _ = aggregate_monthly_signals(four_month_history, categories)

        assert [m.period for m in months] == ["2026-01", "2026-02", "2026-03", "2026-04"]
        january = months[0]
        assert january.income_cents == 300000
        assert january.expenses_cents == 182000
        assert january.superfluous_cents == 20000
        assert january.comfort_cents == 42000
        assert january.transaction_count == 4

    def test_gaps_are_zero_filled(self, categories):
        transactions = [
            income(100000, "2026-01-03"),
            expense(40000, "rent", "2026-01-05"),
            income(100000, "2026-04-03"),
        ]

        months, _, _ = aggregate_monthly_signals(transactions, categories)

        assert [m.period for m in months] == ["2026-01", "2026-02", "2026-03", "2026-04"]
        assert months[1] == MonthlySignal(period="2026-02")
        assert months[2].transaction_count == 0

    def test_range_crosses_year_boundary(self, categories):
        transactions = [
            income(100000, "2025-11-03"),
            income(100000, "2026-02-03"),
        ]

        months, _, _ = aggregate_monthly_signals(transactions, categories)

        assert [m.period for m in months] == ["2025-11", "2025-12", "2026-01", "2026-02"]

    def test_negative_amounts_use_absolute_value(self, categories):
        transactions = [
            income(100000, "2026-01-03"),
            expense(-25000, "rent", "2026-01-05"),
        ]

        months, _, _ = aggregate_monthly_signals(transactions, categories)

        assert months[0].expenses_cents == 25000

    def test_unclassified_expenses_count_only_in_total(self):
        transactions = [
            income(100000, "2026-01-03"),
            expense(30000, "unknown", "2026-01-05"),
        ]

        months, _, _ = aggregate_monthly_signals(transactions, [])

        assert months[0].expenses_cents == 30000
        assert months[0].superfluous_cents == 0
        assert months[0].comfort_cents == 0


class TestBudgetGroupResolution:
    """Manual superfluous overrides take precedence over category nature"""

    def test_flagged_superfluous_always_wins(self):
        assert resolve_budget_group({"is_superfluous": True}, "essential") == "superfluous"

    def test_explicitly_not_superfluous_is_demoted_to_comfort(self):
        assert resolve_budget_group({"is_superfluous": False}, "superfluous") == "comfort"

    def test_category_nature_is_used_without_flag(self):
        assert resolve_budget_group({}, "comfort") == "comfort"
        assert resolve_budget_group({}, "superfluous") == "superfluous"

    def test_unknown_category_defaults_to_essential(self):
        assert resolve_budget_group({}, None) == "essential"


class TestFeatureValues:
    """Pure feature vector construction"""

    def test_reference_vector(self):
        current = MonthlySignal(
            period="2026-02",
            income_cents=1000,
            expenses_cents=800,
            superfluous_cents=200,
            comfort_cents=100,
            transaction_count=6,
        )
        previous = MonthlySignal(period="2026-01", expenses_cents=400)

        values = build_feature_values(current, previous)

        assert values == pytest.approx((0.4, 0.25, 0.125, 0.05, 1.0))

    def test_zero_income_uses_minimum_denominator(self):
        current = MonthlySignal(period="2026-02", expenses_cents=500, transaction_count=1)

        values = build_feature_values(current, current)

        assert values[0] == 1.0
        assert values[4] == 0.5

    def test_empty_months_produce_neutral_vector(self):
        empty = MonthlySignal(period="2026-02")

        assert build_feature_values(empty, empty) == (0.0, 0.0, 0.0, 0.0, 0.5)

    def test_values_are_bounded(self):
        current = MonthlySignal(
            period="2026-02",
            income_cents=1,
            expenses_cents=10**9,
            superfluous_cents=10**9,
            comfort_cents=10**9,
            transaction_count=10**4,
        )
        previous = MonthlySignal(period="2026-01")

        values = build_feature_values(current, previous)

        assert len(values) == NEURAL_BRAIN_VECTOR_SIZE
        assert all(0.0 <= v <= 1.0 for v in values)


class TestNextMonthSamples:
    """Sample policy of the next-month head"""

    def test_interior_months_use_following_month_as_target(self, four_month_history, categories):
        dataset = build_dataset(four_month_history, categories)
        months, _, _ = aggregate_monthly_signals(four_month_history, categories)

        assert [s.period for s in dataset.samples] == ["2026-02", "2026-03"]

        february = dataset.samples[0]
        assert february.x == build_feature_values(months[1], months[0])
        assert february.y == pytest.approx(months[2].expenses_cents / months[2].income_cents)
        assert february.y != pytest.approx(months[1].expenses_cents / months[1].income_cents)

    def test_two_months_yield_one_sample(self, categories):
        transactions = [
            income(200000, "2026-01-03"),
            expense(100000, "rent", "2026-01-05"),
            income(200000, "2026-02-03"),
            expense(150000, "rent", "2026-02-05"),
        ]

        dataset = build_dataset(transactions, categories)

        assert len(dataset.samples) == 1
        assert dataset.samples[0].period == "2026-02"
        assert dataset.samples[0].y == pytest.approx(0.75)

    def test_single_month_bootstrap(self, categories):
        transactions = [
            income(1000, "2026-05-03"),
            expense(800, "food", "2026-05-11"),
        ]

        dataset = build_dataset(transactions, categories)

        assert dataset.months == 1
        assert len(dataset.samples) == 1
        assert dataset.samples[0].y == pytest.approx(0.8)
        assert dataset.nowcast_samples == []
        assert dataset.inference_input.period == "2026-05"
        assert dataset.current_month_inference_input.period == "2026-05"

    def test_targets_are_clamped(self, categories):
        transactions = [
            income(100, "2026-05-03"),
            expense(900000, "food", "2026-05-11"),
        ]

        dataset = build_dataset(transactions, categories)

        assert dataset.samples[0].y == 2


class TestNowcastSamples:
    """Partial-month checkpoints of closed interior months"""

    def test_checkpoint_indexes(self):
        assert resolve_checkpoint_indexes(0) == []
        assert resolve_checkpoint_indexes(1) == [0]
        assert resolve_checkpoint_indexes(4) == [0, 1, 2, 3]
        assert resolve_checkpoint_indexes(13) == [0, 1, 3, 4, 6, 7, 9, 10, 12]

    def test_interior_months_only(self, four_month_history, categories):
        dataset = build_dataset(four_month_history, categories)

        periods = [s.period for s in dataset.nowcast_samples]
        assert periods == [
            "2026-02@2/4", "2026-02@3/4", "2026-02@4/4",
            "2026-03@2/4", "2026-03@3/4", "2026-03@4/4",
        ]

    def test_target_is_remaining_expense_over_baseline(self, four_month_history, categories):
        dataset = build_dataset(four_month_history, categories)

        first = dataset.nowcast_samples[0]
        # February after income and rent: 184000 total, 121000 seen
        assert first.y == pytest.approx((184000 - 121000) / 302000)

        month_end = dataset.nowcast_samples[2]
        assert month_end.y == 0

    def test_three_months_produce_nowcast_samples(self, four_month_history, categories):
        dataset = build_dataset(four_month_history[:12], categories)

        assert dataset.months == 3
        assert len(dataset.samples) == 1
        assert len(dataset.nowcast_samples) > 0
        assert all(len(s.x) == NEURAL_BRAIN_VECTOR_SIZE for s in dataset.nowcast_samples)


class TestInferenceInput:
    """Selection of the month used for live inference"""

    def test_defaults_to_latest_month(self, four_month_history, categories):
        dataset = build_dataset(four_month_history, categories)

        assert dataset.inference_input.period == "2026-04"
        assert dataset.inference_input.current_income_cents == 307000
        assert dataset.inference_input.current_expenses_cents == 190000
        assert dataset.current_month_inference_input.nowcast_baseline_cents == 307000

    def test_preferred_period_is_honored(self, four_month_history, categories):
        dataset = build_dataset(four_month_history, categories, preferred_period="2026-02")

        assert dataset.inference_input.period == "2026-02"

    def test_first_or_unknown_period_falls_back_to_latest(self, four_month_history, categories):
        first = build_dataset(four_month_history, categories, preferred_period="2026-01")
        unknown = build_dataset(four_month_history, categories, preferred_period="2030-01")

        assert first.inference_input.period == "2026-04"
        assert unknown.inference_input.period == "2026-04"

    def test_empty_history(self, categories):
        dataset = build_dataset([], categories)

        assert dataset.months == 0
        assert dataset.inference_input is None
        assert dataset.current_month_inference_input is None
        assert dataset.samples == []
        assert dataset.nowcast_samples == []


class TestFingerprint:
    """Content hash used to avoid retraining"""

    def test_fnv1a_reference_values(self):
        assert fnv1a_32("") == 0x811C9DC5
        assert fnv1a_32("a") == 0xE40C292C

    def test_empty_history_fingerprint(self):
        assert compute_fingerprint([]) == "brain-v2-811c9dc5"

    def test_permutation_keeps_fingerprint(self, four_month_history, categories):
        shuffled = list(four_month_history)
        random.Random(7).shuffle(shuffled)

        original = build_dataset(four_month_history, categories).fingerprint
        permuted = build_dataset(shuffled, categories).fingerprint

        assert original == permuted
        assert original.startswith("brain-v2-")
        assert len(original) == len("brain-v2-") + 8

    def test_integral_floats_hash_like_integers(self):
        as_int = MonthlySignal(period="2026-01", income_cents=1000, expenses_cents=800, transaction_count=2)
        as_float = MonthlySignal(period="2026-01", income_cents=1000.0, expenses_cents=800.0, transaction_count=2)

        assert compute_fingerprint([as_int]) == compute_fingerprint([as_float])

    def test_new_transaction_changes_fingerprint(self, four_month_history, categories):
        extended = four_month_history + [expense(5000, "food", "2026-04-20")]

        before = build_dataset(four_month_history, categories).fingerprint
        after = build_dataset(extended, categories).fingerprint

        assert before != after
