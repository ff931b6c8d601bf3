"""
Neural Core - On-device incremental expense predictor
"""

from .config import BrainSettings
from .core import get_brain_snapshot, initialize_brain, reset_brain
from .engine import EvolutionEngine, evolve_brain_from_history
from .features import build_dataset, build_feature_values
from .signature import compute_input_signature
from .storage import SnapshotStore
from .types import (
    BRAIN_FEATURE_NAMES,
    BRAIN_MATURITY_SAMPLE_TARGET,
    EvolutionResult,
    NeuralBrainSnapshot,
    NeuralPrediction,
    TrainingProgress,
)

__all__ = [
    'BrainSettings',
    'get_brain_snapshot',
    'initialize_brain',
    'reset_brain',
    'EvolutionEngine',
    'evolve_brain_from_history',
    'build_dataset',
    'build_feature_values',
    'compute_input_signature',
    'SnapshotStore',
    'BRAIN_FEATURE_NAMES',
    'BRAIN_MATURITY_SAMPLE_TARGET',
    'EvolutionResult',
    'NeuralBrainSnapshot',
    'NeuralPrediction',
    'TrainingProgress',
]

__version__ = '0.1.0'
