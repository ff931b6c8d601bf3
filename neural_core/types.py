"""
Neural Core Types
Constants, feature names and the value objects exchanged between components.

Snapshots and heads are frozen dataclasses: every training step hands back a
new value instead of mutating the one it received.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


NEURAL_BRAIN_VERSION = 2
FEATURE_SCHEMA_VERSION = 1
NEURAL_BRAIN_VECTOR_SIZE = 5

BRAIN_FEATURE_NAMES: Tuple[str, ...] = (
    "expense_income_ratio",
    "superfluous_share",
    "comfort_share",
    "txn_density",
    "expense_momentum",
)

FINGERPRINT_PREFIX = "brain-v2-"

DEFAULT_LEARNING_RATE = 0.035
MIN_LEARNING_RATE = 0.008
MAX_LEARNING_RATE = 0.05
WEIGHT_LIMIT = 8.0

# Trained samples after which the sample factor of confidence saturates.
BRAIN_MATURITY_SAMPLE_TARGET = 72

REASON_TRAINED = "trained"
REASON_NO_NEW_DATA = "no-new-data"
REASON_INSUFFICIENT_DATA = "insufficient-data"
REASON_UNINITIALIZED = "uninitialized"


@dataclass(frozen=True)
class MonthlySignal:
    """Aggregate of one calendar month"""

    period: str
    income_cents: float = 0
    expenses_cents: float = 0
    superfluous_cents: float = 0
    comfort_cents: float = 0
    transaction_count: int = 0


@dataclass(frozen=True)
class TrainingSample:
    period: str
    x: Tuple[float, ...]
    y: float


@dataclass(frozen=True)
class NeuralHead:
    """One independently trained linear + sigmoid unit"""

    weights: Tuple[float, ...]
    bias: float
    learning_rate: float
    trained_samples: int
    loss_ema: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weights": list(self.weights),
            "bias": self.bias,
            "learningRate": self.learning_rate,
            "trainedSamples": self.trained_samples,
            "lossEma": self.loss_ema,
        }


@dataclass(frozen=True)
class NeuralBrainSnapshot:
    """
    Complete persisted state of the brain.

    The next-month head lives in the top-level fields so that snapshots
    written before the nowcast head existed keep the same shape.
    """

    version: int
    feature_schema_version: int
    weights: Tuple[float, ...]
    bias: float
    learning_rate: float
    trained_samples: int
    loss_ema: float
    current_month_head: NeuralHead
    data_fingerprint: str
    updated_at: str

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serializable persisted contract (camelCase keys)"""
        return {
            "version": self.version,
            "featureSchemaVersion": self.feature_schema_version,
            "weights": list(self.weights),
            "bias": self.bias,
            "learningRate": self.learning_rate,
            "trainedSamples": self.trained_samples,
            "lossEma": self.loss_ema,
            "currentMonthHead": self.current_month_head.to_dict(),
            "dataFingerprint": self.data_fingerprint,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class InferenceInput:
    period: str
    values: Tuple[float, ...]
    names: Tuple[str, ...]
    current_income_cents: float
    current_expenses_cents: float


@dataclass(frozen=True)
class CurrentMonthInferenceInput(InferenceInput):
    nowcast_baseline_cents: float = 1


@dataclass(frozen=True)
class Contributor:
    feature: str
    value: float
    weight: float
    contribution: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature": self.feature,
            "value": self.value,
            "weight": self.weight,
            "contribution": self.contribution,
        }


@dataclass(frozen=True)
class NeuralPrediction:
    predicted_expense_ratio: float
    risk_score: float
    confidence: float
    contributors: Tuple[Contributor, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predictedExpenseRatio": self.predicted_expense_ratio,
            "riskScore": self.risk_score,
            "confidence": self.confidence,
            "contributors": [c.to_dict() for c in self.contributors],
        }


@dataclass(frozen=True)
class Dataset:
    """Ephemeral training/inference material rebuilt on every call"""

    samples: List[TrainingSample]
    nowcast_samples: List[TrainingSample]
    inference_input: Optional[InferenceInput]
    current_month_inference_input: Optional[CurrentMonthInferenceInput]
    fingerprint: str
    months: int


@dataclass(frozen=True)
class TrainingProgress:
    epoch: int
    total_epochs: int
    average_loss: float
    sample_count: int


@dataclass(frozen=True)
class HeadReliability:
    """In-sample error statistics of a head against a sample set"""

    sample_count: int = 0
    mae: float = 0.0
    mape: float = 0.0
    mape_sample_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sampleCount": self.sample_count,
            "mae": self.mae,
            "mape": self.mape,
            "mapeSampleCount": self.mape_sample_count,
        }


@dataclass
class EvolutionResult:
    """Outcome of one evolve call, consumed by advisor/narration layers"""

    reason: str
    snapshot: Optional[NeuralBrainSnapshot]
    dataset_fingerprint: Optional[str]
    did_train: bool = False
    epochs_run: int = 0
    sample_count: int = 0
    months_analyzed: int = 0
    average_loss: float = 0.0
    prediction: Optional[NeuralPrediction] = None
    inference_period: Optional[str] = None
    current_income_cents: float = 0
    current_expenses_cents: float = 0
    predicted_expenses_next_month_cents: int = 0
    predicted_current_month_remaining_expenses_cents: int = 0
    current_month_nowcast_confidence: float = 0.0
    current_month_nowcast_ready: bool = False
    next_month_reliability: HeadReliability = field(default_factory=HeadReliability)
    nowcast_reliability: HeadReliability = field(default_factory=HeadReliability)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "datasetFingerprint": self.dataset_fingerprint,
            "didTrain": self.did_train,
            "epochsRun": self.epochs_run,
            "sampleCount": self.sample_count,
            "monthsAnalyzed": self.months_analyzed,
            "averageLoss": self.average_loss,
            "prediction": self.prediction.to_dict() if self.prediction else None,
            "inferencePeriod": self.inference_period,
            "currentIncomeCents": self.current_income_cents,
            "currentExpensesCents": self.current_expenses_cents,
            "predictedExpensesNextMonthCents": self.predicted_expenses_next_month_cents,
            "predictedCurrentMonthRemainingExpensesCents": (
                self.predicted_current_month_remaining_expenses_cents
            ),
            "currentMonthNowcastConfidence": self.current_month_nowcast_confidence,
            "currentMonthNowcastReady": self.current_month_nowcast_ready,
            "nextMonthReliability": self.next_month_reliability.to_dict(),
            "nowcastReliability": self.nowcast_reliability.to_dict(),
        }
