"""
Core Facade
Lifecycle entry points of the brain: initialize, read and reset.
"""

import logging
from typing import Optional

from .model import create_new_snapshot, is_compatible
from .storage import SnapshotStore, get_default_store
from .types import NeuralBrainSnapshot

logger = logging.getLogger(__name__)


def get_brain_snapshot(store: Optional[SnapshotStore] = None) -> Optional[NeuralBrainSnapshot]:
    """Current snapshot, or None when absent or incompatible"""
    snapshot = (store or get_default_store()).load()
    if snapshot is None or not is_compatible(snapshot):
        return None
    return snapshot


def initialize_brain(store: Optional[SnapshotStore] = None) -> NeuralBrainSnapshot:
    """Return the existing snapshot, or persist and return a newborn one"""
    store = store or get_default_store()
    existing = get_brain_snapshot(store)
    if existing is not None:
        return existing

    newborn = create_new_snapshot()
    store.save(newborn)
    logger.info("Initialized newborn brain snapshot")
    return newborn


def reset_brain(store: Optional[SnapshotStore] = None):
    (store or get_default_store()).reset()
    logger.info("Brain snapshot reset")
