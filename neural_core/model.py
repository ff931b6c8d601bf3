"""
Neural Model Module
Pure functions over immutable heads and snapshots: forward pass, gradient
descent epochs, loss statistics, confidence, inference and migration of
persisted snapshots.
"""

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from .types import (
    BRAIN_MATURITY_SAMPLE_TARGET,
    DEFAULT_LEARNING_RATE,
    FEATURE_SCHEMA_VERSION,
    MAX_LEARNING_RATE,
    MIN_LEARNING_RATE,
    NEURAL_BRAIN_VECTOR_SIZE,
    NEURAL_BRAIN_VERSION,
    WEIGHT_LIMIT,
    Contributor,
    HeadReliability,
    NeuralBrainSnapshot,
    NeuralHead,
    NeuralPrediction,
    TrainingSample,
)

logger = logging.getLogger(__name__)

LOSS_EMA_ALPHA = 0.22
LEARNING_RATE_DECAY = 0.997

CONFIDENCE_FLOOR = 0.12
CONFIDENCE_SAMPLE_WEIGHT = 0.7
CONFIDENCE_LOSS_WEIGHT = 0.18
CONFIDENCE_LOSS_SCALE = 0.22
CONFIDENCE_RANGE = (0.08, 0.99)

RISK_STEEPNESS = 5.5

# Targets below this are too small for a meaningful percentage error.
MAPE_MIN_TARGET = 0.05


def clamp(value: float, minimum: float, maximum: float) -> float:
    return min(maximum, max(minimum, value))


def sigmoid(x: float) -> float:
    if x > 20:
        return 1.0
    if x < -20:
        return 0.0
    return 1 / (1 + math.exp(-x))


def utc_now_iso() -> str:
    """Current UTC time as ISO-8601 with millisecond precision"""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def _to_finite(value: Any, fallback: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    try:
        number = float(value)
    except OverflowError:
        return fallback
    return number if math.isfinite(number) else fallback


def ensure_vector_size(values: Sequence[float], size: int = NEURAL_BRAIN_VECTOR_SIZE) -> Tuple[float, ...]:
    """Pad with zeros or truncate to the canonical vector size"""
    out = list(values[:size])
    out.extend([0.0] * (size - len(out)))
    return tuple(out)


def _clamp_weight(value: float) -> float:
    return clamp(value, -WEIGHT_LIMIT, WEIGHT_LIMIT)


def _clamp_learning_rate(value: float) -> float:
    return clamp(value, MIN_LEARNING_RATE, MAX_LEARNING_RATE)


def create_empty_head(learning_rate: float = DEFAULT_LEARNING_RATE) -> NeuralHead:
    return NeuralHead(
        weights=(0.0,) * NEURAL_BRAIN_VECTOR_SIZE,
        bias=0.0,
        learning_rate=_clamp_learning_rate(learning_rate),
        trained_samples=0,
        loss_ema=0.0,
    )


def normalize_head(raw: Any, fallback_learning_rate: float = DEFAULT_LEARNING_RATE) -> Optional[NeuralHead]:
    """
    Coerce a raw head mapping into a valid head

    Returns None when there is no list of weights to start from.
    """
    if not isinstance(raw, Mapping):
        return None
    weights = raw.get("weights")
    if not isinstance(weights, (list, tuple)):
        return None

    return NeuralHead(
        weights=ensure_vector_size([_clamp_weight(_to_finite(w, 0.0)) for w in weights]),
        bias=_clamp_weight(_to_finite(raw.get("bias"), 0.0)),
        learning_rate=_clamp_learning_rate(
            _to_finite(raw.get("learningRate"), fallback_learning_rate)
        ),
        trained_samples=max(0, int(round(_to_finite(raw.get("trainedSamples"), 0)))),
        loss_ema=max(0.0, _to_finite(raw.get("lossEma"), 0.0)),
    )


def next_month_head(snapshot: NeuralBrainSnapshot) -> NeuralHead:
    return NeuralHead(
        weights=ensure_vector_size(snapshot.weights),
        bias=_clamp_weight(snapshot.bias),
        learning_rate=_clamp_learning_rate(snapshot.learning_rate),
        trained_samples=max(0, int(round(snapshot.trained_samples))),
        loss_ema=max(0.0, snapshot.loss_ema),
    )


def current_month_head(snapshot: NeuralBrainSnapshot) -> NeuralHead:
    return snapshot.current_month_head


def with_next_month_head(snapshot: NeuralBrainSnapshot, head: NeuralHead) -> NeuralBrainSnapshot:
    return replace(
        snapshot,
        weights=tuple(head.weights),
        bias=head.bias,
        learning_rate=head.learning_rate,
        trained_samples=head.trained_samples,
        loss_ema=head.loss_ema,
    )


def with_current_month_head(snapshot: NeuralBrainSnapshot, head: NeuralHead) -> NeuralBrainSnapshot:
    return replace(snapshot, current_month_head=head)


def stamp_training(
    snapshot: NeuralBrainSnapshot,
    fingerprint: str,
    now: Optional[str] = None,
) -> NeuralBrainSnapshot:
    """Record the dataset a snapshot was last trained on"""
    return replace(snapshot, data_fingerprint=fingerprint, updated_at=now or utc_now_iso())


def create_new_snapshot(now: Optional[str] = None) -> NeuralBrainSnapshot:
    """Newborn brain: both heads all-zero, no fingerprint"""
    head = create_empty_head()
    return NeuralBrainSnapshot(
        version=NEURAL_BRAIN_VERSION,
        feature_schema_version=FEATURE_SCHEMA_VERSION,
        weights=head.weights,
        bias=head.bias,
        learning_rate=head.learning_rate,
        trained_samples=head.trained_samples,
        loss_ema=head.loss_ema,
        current_month_head=create_empty_head(),
        data_fingerprint="",
        updated_at=now or utc_now_iso(),
    )


def migrate_snapshot(raw: Any, now: Optional[str] = None) -> Optional[NeuralBrainSnapshot]:
    """
    Coerce an arbitrary, possibly older-shaped value into a current snapshot

    Never raises. Returns None when the value has no usable weights array;
    every other field is normalized with a fallback and the current versions
    are stamped.

    Args:
        raw: NeuralBrainSnapshot or JSON-deserialized value
        now: ISO timestamp used when the value carries none

    Returns:
        Current snapshot, or None when it cannot be recovered
    """
    if isinstance(raw, NeuralBrainSnapshot):
        raw = raw.to_dict()

    head = normalize_head(raw, DEFAULT_LEARNING_RATE)
    if head is None:
        return None

    nowcast_head = normalize_head(raw.get("currentMonthHead"), head.learning_rate)
    if nowcast_head is None:
        nowcast_head = create_empty_head(head.learning_rate)

    if raw.get("version") != NEURAL_BRAIN_VERSION:
        logger.debug(f"Upgrading brain snapshot from version {raw.get('version')!r}")

    fingerprint = raw.get("dataFingerprint")
    updated_at = raw.get("updatedAt")

    return NeuralBrainSnapshot(
        version=NEURAL_BRAIN_VERSION,
        feature_schema_version=FEATURE_SCHEMA_VERSION,
        weights=head.weights,
        bias=head.bias,
        learning_rate=head.learning_rate,
        trained_samples=head.trained_samples,
        loss_ema=head.loss_ema,
        current_month_head=nowcast_head,
        data_fingerprint=fingerprint if isinstance(fingerprint, str) else "",
        updated_at=updated_at if isinstance(updated_at, str) else (now or utc_now_iso()),
    )


def is_compatible(snapshot: Optional[NeuralBrainSnapshot]) -> bool:
    """Read-side guard: stale or hand-edited snapshots count as absent"""
    if not isinstance(snapshot, NeuralBrainSnapshot):
        return False
    if snapshot.version != NEURAL_BRAIN_VERSION:
        return False
    if snapshot.feature_schema_version != FEATURE_SCHEMA_VERSION:
        return False

    payload = snapshot.to_dict()
    head = normalize_head(payload, snapshot.learning_rate)
    nowcast_head = normalize_head(payload["currentMonthHead"], snapshot.learning_rate)
    if head is None or nowcast_head is None:
        return False

    return (
        len(snapshot.weights) == NEURAL_BRAIN_VECTOR_SIZE
        and len(snapshot.current_month_head.weights) == NEURAL_BRAIN_VECTOR_SIZE
    )


@dataclass(frozen=True)
class ForwardResult:
    normalized_x: Tuple[float, ...]
    s: float
    predicted_ratio: float


def forward(head: NeuralHead, x: Sequence[float]) -> ForwardResult:
    """Linear unit behind a sigmoid, mapped onto an expense ratio in [0, 2]"""
    normalized_x = ensure_vector_size(list(x))
    z = sum(w * v for w, v in zip(head.weights, normalized_x)) + head.bias
    s = sigmoid(z)
    return ForwardResult(normalized_x=normalized_x, s=s, predicted_ratio=2 * s)


def train_epoch(head: NeuralHead, samples: Sequence[TrainingSample]) -> Tuple[NeuralHead, float]:
    """
    One in-order SGD pass over the samples with squared-error loss

    Weights and bias are clamped after every sample so state stays bounded
    even under a pathological sample.

    Returns:
        (updated head, mean loss of the epoch)
    """
    if not samples:
        return head, head.loss_ema

    weights: List[float] = list(head.weights)
    bias = head.bias
    rate = head.learning_rate
    total_loss = 0.0

    for sample in samples:
        target = clamp(sample.y, 0, 2)
        result = forward(replace(head, weights=tuple(weights), bias=bias), sample.x)
        error = result.predicted_ratio - target
        total_loss += error * error

        # predicted_ratio = 2 * sigmoid(z)
        d_loss_dz = 2 * error * (2 * result.s * (1 - result.s))
        for i, value in enumerate(result.normalized_x):
            weights[i] = _clamp_weight(weights[i] - rate * d_loss_dz * value)
        bias = _clamp_weight(bias - rate * d_loss_dz)

    updated = replace(head, weights=tuple(weights), bias=bias)
    return updated, total_loss / len(samples)


def finalize_head(head: NeuralHead, sample_count: int, average_loss: float) -> NeuralHead:
    """Account trained samples, blend the loss EMA and anneal the learning rate"""
    if head.loss_ema == 0:
        loss_ema = average_loss
    else:
        loss_ema = (1 - LOSS_EMA_ALPHA) * head.loss_ema + LOSS_EMA_ALPHA * average_loss

    return replace(
        head,
        trained_samples=head.trained_samples + sample_count,
        loss_ema=loss_ema,
        learning_rate=_clamp_learning_rate(head.learning_rate * LEARNING_RATE_DECAY),
    )


def compute_confidence(head: NeuralHead) -> float:
    sample_factor = clamp(head.trained_samples / BRAIN_MATURITY_SAMPLE_TARGET, 0, 1)
    loss_factor = 1 - clamp(head.loss_ema / CONFIDENCE_LOSS_SCALE, 0, 1)
    confidence = (
        CONFIDENCE_FLOOR
        + sample_factor * CONFIDENCE_SAMPLE_WEIGHT
        + loss_factor * CONFIDENCE_LOSS_WEIGHT
    )
    return clamp(confidence, *CONFIDENCE_RANGE)


def predict(head: NeuralHead, values: Sequence[float], names: Sequence[str]) -> NeuralPrediction:
    """
    Run inference and rank feature contributions

    Contributors are every feature with its value, weight and their product,
    sorted by descending absolute contribution.
    """
    result = forward(head, values)
    ratio = result.predicted_ratio

    contributors = []
    for index, feature in enumerate(names):
        value = result.normalized_x[index] if index < len(result.normalized_x) else 0.0
        weight = head.weights[index] if index < len(head.weights) else 0.0
        contributors.append(Contributor(
            feature=feature,
            value=value,
            weight=weight,
            contribution=value * weight,
        ))
    contributors.sort(key=lambda c: abs(c.contribution), reverse=True)

    return NeuralPrediction(
        predicted_expense_ratio=ratio,
        risk_score=sigmoid((ratio - 1) * RISK_STEEPNESS),
        confidence=compute_confidence(head),
        contributors=tuple(contributors),
    )


def evaluate_head(head: NeuralHead, samples: Sequence[TrainingSample]) -> HeadReliability:
    """Mean absolute and mean absolute percentage error of a head"""
    if not samples:
        return HeadReliability()

    absolute_errors = []
    percentage_errors = []
    for sample in samples:
        target = clamp(sample.y, 0, 2)
        error = abs(forward(head, sample.x).predicted_ratio - target)
        absolute_errors.append(error)
        if target >= MAPE_MIN_TARGET:
            percentage_errors.append(error / target)

    return HeadReliability(
        sample_count=len(absolute_errors),
        mae=sum(absolute_errors) / len(absolute_errors),
        mape=sum(percentage_errors) / len(percentage_errors) if percentage_errors else 0.0,
        mape_sample_count=len(percentage_errors),
    )
