"""
Feature Builder Module
Turns raw transactions/categories into monthly signals, feature vectors,
training samples and a content fingerprint of the history.
"""

import logging
import math
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .types import (
    BRAIN_FEATURE_NAMES,
    FINGERPRINT_PREFIX,
    CurrentMonthInferenceInput,
    Dataset,
    InferenceInput,
    MonthlySignal,
    TrainingSample,
)

logger = logging.getLogger(__name__)

NOWCAST_CHECKPOINT_ANCHORS = (0.16, 0.28, 0.4, 0.52, 0.64, 0.76, 0.88)

# Transaction count at which the density feature saturates.
DENSITY_SATURATION = 120

FNV_OFFSET_BASIS = 0x811C9DC5
FNV_PRIME = 0x01000193


def clamp(value: float, minimum: float, maximum: float) -> float:
    return min(maximum, max(minimum, value))


def normalize_signed(value: float) -> float:
    """Map a signed value from [-1, 1] onto [0, 1]"""
    return (clamp(value, -1, 1) + 1) / 2


def to_period(timestamp_ms: float) -> str:
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return f"{moment.year}-{moment.month:02d}"


def _next_period(period: str) -> str:
    year, month = (int(part) for part in period.split("-"))
    if month == 12:
        return f"{year + 1}-01"
    return f"{year}-{month + 1:02d}"


def fnv1a_32(value: str) -> int:
    """32-bit FNV-1a over UTF-16 code units"""
    h = FNV_OFFSET_BASIS
    encoded = value.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        h ^= encoded[i] | (encoded[i + 1] << 8)
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return h


def resolve_budget_group(transaction: Mapping, category_nature: Optional[str]) -> str:
    """
    Resolve the budget group of an expense, honoring manual overrides

    Args:
        transaction: Transaction mapping (may carry 'is_superfluous')
        category_nature: Spending nature of the transaction's category

    Returns:
        'essential', 'comfort' or 'superfluous'
    """
    flag = transaction.get("is_superfluous")
    if flag is True:
        return "superfluous"
    # Explicitly not superfluous: a superfluous category is demoted
    if flag is False and category_nature == "superfluous":
        return "comfort"
    return category_nature or "essential"


def summarize_signal(
    period: str,
    transactions: Iterable[Mapping],
    category_natures: Mapping[str, str],
) -> MonthlySignal:
    """
    Aggregate a list of transactions into a single monthly signal

    Args:
        period: 'YYYY-MM' label of the signal
        transactions: Transaction mappings belonging to the period
        category_natures: Category id -> spending nature

    Returns:
        MonthlySignal with income, expense and sub-total sums
    """
    income = 0
    expenses = 0
    superfluous = 0
    comfort = 0
    count = 0

    for transaction in transactions:
        amount = abs(transaction.get("amount_cents") or 0)
        if transaction.get("type") == "income":
            income += amount
        else:
            expenses += amount
            group = resolve_budget_group(
                transaction, category_natures.get(transaction.get("category_id"))
            )
            if group == "superfluous":
                superfluous += amount
            elif group == "comfort":
                comfort += amount
        count += 1

    return MonthlySignal(
        period=period,
        income_cents=income,
        expenses_cents=expenses,
        superfluous_cents=superfluous,
        comfort_cents=comfort,
        transaction_count=count,
    )


def aggregate_monthly_signals(
    transactions: Sequence[Mapping],
    categories: Sequence[Mapping],
) -> Tuple[List[MonthlySignal], Dict[str, List[Mapping]], Dict[str, str]]:
    """
    Bucket transactions by calendar month

    Every month between the first and last observed one is present in the
    returned list; months without transactions are zero-filled.

    Returns:
        (ordered monthly signals, transactions by period sorted by timestamp,
         category id -> spending nature)
    """
    category_natures = {c.get("id"): c.get("spending_nature") for c in categories}

    by_period: Dict[str, List[Mapping]] = defaultdict(list)
    for transaction in transactions:
        by_period[to_period(transaction.get("timestamp") or 0)].append(transaction)

    for period_transactions in by_period.values():
        period_transactions.sort(key=lambda t: t.get("timestamp") or 0)

    observed = {
        period: summarize_signal(period, period_transactions, category_natures)
        for period, period_transactions in by_period.items()
    }
    ordered = sorted(observed)
    if len(ordered) <= 1:
        return [observed[p] for p in ordered], dict(by_period), category_natures

    months = []
    cursor = ordered[0]
    while cursor <= ordered[-1]:
        months.append(observed.get(cursor) or MonthlySignal(period=cursor))
        cursor = _next_period(cursor)

    return months, dict(by_period), category_natures


def build_feature_values(current: MonthlySignal, previous: MonthlySignal) -> Tuple[float, ...]:
    """
    Build the fixed-length feature vector for a (current, previous) pair

    All values are in [0, 1]; momentum is normalized from [-1, 1].
    """
    income_safe = max(current.income_cents, 1)
    previous_expenses_safe = max(previous.expenses_cents, 1)
    expenses = current.expenses_cents

    expense_income_ratio = clamp((expenses / income_safe) / 2, 0, 1)
    superfluous_share = clamp(current.superfluous_cents / expenses, 0, 1) if expenses > 0 else 0.0
    comfort_share = clamp(current.comfort_cents / expenses, 0, 1) if expenses > 0 else 0.0
    density = clamp(current.transaction_count / DENSITY_SATURATION, 0, 1)
    momentum = normalize_signed((expenses - previous.expenses_cents) / previous_expenses_safe)

    return (
        float(expense_income_ratio),
        float(superfluous_share),
        float(comfort_share),
        float(density),
        float(momentum),
    )


def _format_number(value: float) -> str:
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return str(int(value))
    return str(value)


def compute_fingerprint(months: Sequence[MonthlySignal]) -> str:
    """Content hash over the ordered monthly aggregates"""
    payload = "|".join(
        ":".join([
            month.period,
            _format_number(month.income_cents),
            _format_number(month.expenses_cents),
            _format_number(month.superfluous_cents),
            _format_number(month.comfort_cents),
            _format_number(month.transaction_count),
        ])
        for month in months
    )
    return f"{FINGERPRINT_PREFIX}{fnv1a_32(payload):08x}"


def compute_nowcast_baseline(income_cents: float, expenses_cents: float) -> float:
    return max(income_cents, expenses_cents, 1)


def resolve_checkpoint_indexes(transaction_count: int) -> List[int]:
    """Indexes of the partial-month observations used for nowcast samples"""
    if transaction_count <= 0:
        return []
    last = transaction_count - 1
    checkpoints = {0, last}
    for anchor in NOWCAST_CHECKPOINT_ANCHORS:
        checkpoints.add(int(clamp(math.floor(last * anchor), 0, last)))
    return sorted(checkpoints)


def build_nowcast_samples(
    months: Sequence[MonthlySignal],
    transactions_by_period: Mapping[str, Sequence[Mapping]],
    category_natures: Mapping[str, str],
) -> List[TrainingSample]:
    """
    Simulate partial-month observations of closed months

    The latest month is never used: it is the live inference horizon.
    Targets are the remaining expenses of the month, normalized by the
    partial nowcast baseline.
    """
    samples: List[TrainingSample] = []
    if len(months) < 2:
        return samples

    for i in range(1, len(months) - 1):
        previous_month = months[i - 1]
        current_month = months[i]
        if current_month.expenses_cents <= 0:
            continue

        month_transactions = transactions_by_period.get(current_month.period) or []
        total = len(month_transactions)
        if total < 2:
            continue

        for checkpoint in resolve_checkpoint_indexes(total):
            partial = summarize_signal(
                current_month.period,
                month_transactions[:checkpoint + 1],
                category_natures,
            )
            if partial.expenses_cents <= 0:
                continue

            remaining = max(current_month.expenses_cents - partial.expenses_cents, 0)
            baseline = compute_nowcast_baseline(partial.income_cents, partial.expenses_cents)
            samples.append(TrainingSample(
                period=f"{current_month.period}@{checkpoint + 1}/{total}",
                x=build_feature_values(partial, previous_month),
                y=clamp(remaining / baseline, 0, 2),
            ))

    return samples


def build_next_month_samples(months: Sequence[MonthlySignal]) -> List[TrainingSample]:
    """
    Build the supervised samples of the next-month head

    With three or more months the label always comes from the month after
    the feature window. Two months yield one sample, a single month yields
    one bootstrap sample against itself.
    """
    samples: List[TrainingSample] = []

    if len(months) >= 3:
        for i in range(1, len(months) - 1):
            previous_month, current_month, next_month = months[i - 1], months[i], months[i + 1]
            income_safe = max(next_month.income_cents or current_month.income_cents, 1)
            samples.append(TrainingSample(
                period=current_month.period,
                x=build_feature_values(current_month, previous_month),
                y=clamp(next_month.expenses_cents / income_safe, 0, 2),
            ))
    elif len(months) == 2:
        previous_month, current_month = months
        income_safe = max(current_month.income_cents or previous_month.income_cents, 1)
        samples.append(TrainingSample(
            period=current_month.period,
            x=build_feature_values(current_month, previous_month),
            y=clamp(current_month.expenses_cents / income_safe, 0, 2),
        ))
    elif len(months) == 1:
        only_month = months[0]
        samples.append(TrainingSample(
            period=only_month.period,
            x=build_feature_values(only_month, only_month),
            y=clamp(only_month.expenses_cents / max(only_month.income_cents, 1), 0, 2),
        ))

    return samples


def _select_inference_index(months: Sequence[MonthlySignal], preferred_period: Optional[str]) -> int:
    fallback = len(months) - 1
    selected = fallback
    if preferred_period:
        selected = next(
            (i for i, month in enumerate(months) if month.period == preferred_period),
            fallback,
        )
    # The first month has no predecessor; prefer the latest when possible
    if selected <= 0 and len(months) > 1:
        selected = fallback
    return selected


def build_dataset(
    transactions: Sequence[Mapping],
    categories: Sequence[Mapping],
    preferred_period: Optional[str] = None,
) -> Dataset:
    """
    Build the training and inference dataset from raw history

    Args:
        transactions: Mappings with 'amount_cents', 'type', 'timestamp' (ms),
            'category_id' and optional 'is_superfluous'
        categories: Mappings with 'id' and 'spending_nature'
        preferred_period: Optional 'YYYY-MM' month to run inference on

    Returns:
        Dataset with both sample sets, inference inputs and fingerprint
    """
    months, transactions_by_period, category_natures = aggregate_monthly_signals(
        transactions, categories
    )
    fingerprint = compute_fingerprint(months)
    nowcast_samples = build_nowcast_samples(months, transactions_by_period, category_natures)

    if not months:
        return Dataset(
            samples=[],
            nowcast_samples=nowcast_samples,
            inference_input=None,
            current_month_inference_input=None,
            fingerprint=fingerprint,
            months=0,
        )

    selected = _select_inference_index(months, preferred_period)
    current = months[selected]
    previous = months[selected - 1] if selected > 0 else current
    values = build_feature_values(current, previous)

    inference_input = InferenceInput(
        period=current.period,
        values=values,
        names=BRAIN_FEATURE_NAMES,
        current_income_cents=current.income_cents,
        current_expenses_cents=current.expenses_cents,
    )
    current_month_input = CurrentMonthInferenceInput(
        period=current.period,
        values=values,
        names=BRAIN_FEATURE_NAMES,
        current_income_cents=current.income_cents,
        current_expenses_cents=current.expenses_cents,
        nowcast_baseline_cents=compute_nowcast_baseline(
            current.income_cents, current.expenses_cents
        ),
    )

    samples = build_next_month_samples(months)
    logger.debug(
        f"Built dataset {fingerprint}: {len(months)} months, "
        f"{len(samples)} samples, {len(nowcast_samples)} nowcast samples"
    )

    return Dataset(
        samples=samples,
        nowcast_samples=nowcast_samples,
        inference_input=inference_input,
        current_month_inference_input=current_month_input,
        fingerprint=fingerprint,
        months=len(months),
    )
