"""
Evolution Engine Module
Decides whether the brain needs retraining, trains both heads cooperatively
and assembles the prediction result for advisor/narration layers.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Mapping, Optional, Sequence, Tuple

from .core import get_brain_snapshot
from .features import build_dataset
from .model import (
    clamp,
    current_month_head,
    evaluate_head,
    finalize_head,
    next_month_head,
    predict,
    stamp_training,
    train_epoch,
    with_current_month_head,
    with_next_month_head,
)
from .storage import SnapshotStore, get_default_store
from .types import (
    REASON_INSUFFICIENT_DATA,
    REASON_NO_NEW_DATA,
    REASON_TRAINED,
    REASON_UNINITIALIZED,
    CurrentMonthInferenceInput,
    Dataset,
    EvolutionResult,
    HeadReliability,
    InferenceInput,
    NeuralBrainSnapshot,
    NeuralHead,
    TrainingProgress,
    TrainingSample,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[TrainingProgress], None]
YieldControl = Callable[[], Awaitable[None]]

MAX_AVERAGE_LOSS = 10


def resolve_epochs(sample_count: int) -> int:
    """Smaller, noisier sample sets get more passes"""
    if sample_count <= 2:
        return 10
    if sample_count <= 6:
        return 7
    if sample_count <= 12:
        return 5
    return 4


async def _yield_to_event_loop():
    await asyncio.sleep(0)


class EvolutionEngine:
    """Orchestrates incremental training of the brain"""

    def __init__(self,
                 store: Optional[SnapshotStore] = None,
                 min_samples_for_training: int = 1,
                 min_nowcast_samples_for_training: int = 1,
                 min_samples_for_prediction: int = 1,
                 min_nowcast_ready_months: int = 2,
                 min_nowcast_ready_samples: int = 16,
                 min_nowcast_ready_confidence: float = 0.55):
        """
        Initialize evolution engine

        Args:
            store: Snapshot store (default: process-wide store)
            min_samples_for_training: Next-month samples needed to train
            min_nowcast_samples_for_training: Nowcast samples needed to train
            min_samples_for_prediction: Trained samples a head needs to predict
            min_nowcast_ready_months: Months of history for a ready nowcast
            min_nowcast_ready_samples: Nowcast-head samples for a ready nowcast
            min_nowcast_ready_confidence: Nowcast confidence for a ready nowcast
        """
        self._store = store
        self.min_samples_for_training = min_samples_for_training
        self.min_nowcast_samples_for_training = min_nowcast_samples_for_training
        self.min_samples_for_prediction = min_samples_for_prediction
        self.min_nowcast_ready_months = min_nowcast_ready_months
        self.min_nowcast_ready_samples = min_nowcast_ready_samples
        self.min_nowcast_ready_confidence = min_nowcast_ready_confidence

    @property
    def store(self) -> SnapshotStore:
        return self._store or get_default_store()

    def resolve_prediction(self,
                           snapshot: NeuralBrainSnapshot,
                           inference_input: Optional[InferenceInput]) -> Dict:
        """
        Next-month prediction from the given snapshot

        Returns:
            Dict of EvolutionResult prediction fields
        """
        if inference_input is None:
            return {
                'prediction': None,
                'inference_period': None,
                'current_income_cents': 0,
                'current_expenses_cents': 0,
                'predicted_expenses_next_month_cents': 0,
            }

        fields = {
            'prediction': None,
            'inference_period': inference_input.period,
            'current_income_cents': inference_input.current_income_cents,
            'current_expenses_cents': inference_input.current_expenses_cents,
            'predicted_expenses_next_month_cents': 0,
        }

        head = next_month_head(snapshot)
        if head.trained_samples < self.min_samples_for_prediction:
            return fields

        prediction = predict(head, inference_input.values, inference_input.names)
        # Without income, scale the ratio by current expenses instead
        baseline = inference_input.current_income_cents or inference_input.current_expenses_cents
        fields['prediction'] = prediction
        fields['predicted_expenses_next_month_cents'] = max(
            0, round(prediction.predicted_expense_ratio * max(baseline, 1))
        )
        return fields

    def resolve_nowcast(self,
                        snapshot: NeuralBrainSnapshot,
                        inference_input: Optional[CurrentMonthInferenceInput],
                        months_analyzed: int) -> Dict:
        """
        Current-month remaining-expense nowcast and its readiness gate

        Readiness only signals that the nowcast may be trusted; choosing a
        fallback heuristic is left to the caller.
        """
        head = current_month_head(snapshot)
        if inference_input is None or head.trained_samples < self.min_samples_for_prediction:
            return {
                'predicted_current_month_remaining_expenses_cents': 0,
                'current_month_nowcast_confidence': 0.0,
                'current_month_nowcast_ready': False,
            }

        prediction = predict(head, inference_input.values, inference_input.names)
        remaining = max(
            0, round(prediction.predicted_expense_ratio * max(inference_input.nowcast_baseline_cents, 1))
        )
        ready = (
            months_analyzed >= self.min_nowcast_ready_months
            and head.trained_samples >= self.min_nowcast_ready_samples
            and prediction.confidence >= self.min_nowcast_ready_confidence
        )
        return {
            'predicted_current_month_remaining_expenses_cents': remaining,
            'current_month_nowcast_confidence': prediction.confidence,
            'current_month_nowcast_ready': ready,
        }

    def resolve_reliability(self,
                            head: NeuralHead,
                            samples: Sequence[TrainingSample]) -> HeadReliability:
        if head.trained_samples < self.min_samples_for_prediction:
            return HeadReliability()
        return evaluate_head(head, samples)

    def _read_only_result(self,
                          reason: str,
                          snapshot: NeuralBrainSnapshot,
                          dataset: Dataset) -> EvolutionResult:
        return EvolutionResult(
            reason=reason,
            snapshot=snapshot,
            dataset_fingerprint=dataset.fingerprint,
            did_train=False,
            epochs_run=0,
            sample_count=len(dataset.samples) + len(dataset.nowcast_samples),
            months_analyzed=dataset.months,
            average_loss=snapshot.loss_ema,
            next_month_reliability=self.resolve_reliability(
                next_month_head(snapshot), dataset.samples
            ),
            nowcast_reliability=self.resolve_reliability(
                current_month_head(snapshot), dataset.nowcast_samples
            ),
            **self.resolve_prediction(snapshot, dataset.inference_input),
            **self.resolve_nowcast(snapshot, dataset.current_month_inference_input, dataset.months),
        )

    async def _train_head(self,
                          head: NeuralHead,
                          samples: Sequence[TrainingSample],
                          on_progress: Optional[ProgressCallback],
                          yield_control: YieldControl) -> Tuple[NeuralHead, int, float]:
        """
        Run all epochs for one head, yielding between epochs

        Returns:
            (finalized head, epochs run, clamped mean epoch loss)
        """
        epochs = resolve_epochs(len(samples))
        cumulative_loss = 0.0

        for epoch in range(1, epochs + 1):
            head, epoch_loss = train_epoch(head, samples)
            cumulative_loss += epoch_loss
            logger.debug(f"Epoch {epoch}/{epochs}: loss={epoch_loss:.6f} samples={len(samples)}")

            if on_progress is not None:
                on_progress(TrainingProgress(
                    epoch=epoch,
                    total_epochs=epochs,
                    average_loss=epoch_loss,
                    sample_count=len(samples),
                ))

            await yield_control()

        average_loss = clamp(cumulative_loss / epochs, 0, MAX_AVERAGE_LOSS)
        return finalize_head(head, len(samples), average_loss), epochs, average_loss

    async def evolve(self,
                     transactions: Sequence[Mapping],
                     categories: Sequence[Mapping],
                     preferred_period: Optional[str] = None,
                     on_progress: Optional[ProgressCallback] = None,
                     yield_control: Optional[YieldControl] = None) -> EvolutionResult:
        """
        Evolve the brain from the user's history

        Args:
            transactions: Transaction mappings (see features.build_dataset)
            categories: Category mappings
            preferred_period: Optional 'YYYY-MM' month to run inference on
            on_progress: Called after every epoch with a TrainingProgress
            yield_control: Awaited between epochs (default: asyncio.sleep(0))

        Returns:
            EvolutionResult with reason code and predictions for both heads
        """
        store = self.store
        yield_control = yield_control or _yield_to_event_loop
        # Storage calls block on psycopg2; keep them off the event loop
        loop = asyncio.get_running_loop()
        snapshot = await loop.run_in_executor(None, get_brain_snapshot, store)
        dataset = build_dataset(transactions, categories, preferred_period)

        if snapshot is None:
            logger.debug("Brain not initialized, skipping evolution")
            return EvolutionResult(
                reason=REASON_UNINITIALIZED,
                snapshot=None,
                dataset_fingerprint=dataset.fingerprint,
                sample_count=len(dataset.samples) + len(dataset.nowcast_samples),
                months_analyzed=dataset.months,
                inference_period=dataset.inference_input.period if dataset.inference_input else None,
                current_income_cents=(
                    dataset.inference_input.current_income_cents if dataset.inference_input else 0
                ),
                current_expenses_cents=(
                    dataset.inference_input.current_expenses_cents if dataset.inference_input else 0
                ),
            )

        train_next_month = len(dataset.samples) >= self.min_samples_for_training
        train_nowcast = len(dataset.nowcast_samples) >= self.min_nowcast_samples_for_training

        if not train_next_month and not train_nowcast:
            logger.debug(f"Insufficient data to train ({dataset.months} months)")
            return self._read_only_result(REASON_INSUFFICIENT_DATA, snapshot, dataset)

        if snapshot.data_fingerprint and snapshot.data_fingerprint == dataset.fingerprint:
            logger.debug(f"No new data since {dataset.fingerprint}")
            return self._read_only_result(REASON_NO_NEW_DATA, snapshot, dataset)

        working = snapshot
        epochs_run = 0
        trained_sample_count = 0
        phase_losses = []

        if train_next_month:
            head, epochs, loss = await self._train_head(
                next_month_head(working), dataset.samples, on_progress, yield_control
            )
            working = stamp_training(with_next_month_head(working, head), dataset.fingerprint)
            epochs_run += epochs
            trained_sample_count += len(dataset.samples)
            phase_losses.append(loss)

        if train_nowcast:
            head, epochs, loss = await self._train_head(
                current_month_head(working), dataset.nowcast_samples, on_progress, yield_control
            )
            working = stamp_training(with_current_month_head(working, head), dataset.fingerprint)
            epochs_run += epochs
            trained_sample_count += len(dataset.nowcast_samples)
            phase_losses.append(loss)

        average_loss = clamp(sum(phase_losses) / len(phase_losses), 0, MAX_AVERAGE_LOSS)
        # Single write once every head has trained
        await loop.run_in_executor(None, store.save, working)
        logger.info(
            f"Brain trained on {trained_sample_count} samples over {epochs_run} epochs "
            f"(loss={average_loss:.6f}, fingerprint={dataset.fingerprint})"
        )

        return EvolutionResult(
            reason=REASON_TRAINED,
            snapshot=working,
            dataset_fingerprint=dataset.fingerprint,
            did_train=True,
            epochs_run=epochs_run,
            sample_count=trained_sample_count,
            months_analyzed=dataset.months,
            average_loss=average_loss,
            next_month_reliability=self.resolve_reliability(
                next_month_head(working), dataset.samples
            ),
            nowcast_reliability=self.resolve_reliability(
                current_month_head(working), dataset.nowcast_samples
            ),
            **self.resolve_prediction(working, dataset.inference_input),
            **self.resolve_nowcast(working, dataset.current_month_inference_input, dataset.months),
        )


async def evolve_brain_from_history(transactions: Sequence[Mapping],
                                    categories: Sequence[Mapping],
                                    preferred_period: Optional[str] = None,
                                    on_progress: Optional[ProgressCallback] = None,
                                    yield_control: Optional[YieldControl] = None,
                                    store: Optional[SnapshotStore] = None) -> EvolutionResult:
    """Evolve the brain with the default engine thresholds"""
    engine = EvolutionEngine(store=store)
    return await engine.evolve(
        transactions,
        categories,
        preferred_period=preferred_period,
        on_progress=on_progress,
        yield_control=yield_control,
    )
