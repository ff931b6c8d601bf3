"""
Core facade lifecycle: initialize, read and reset
"""

from dataclasses import replace

from freezegun import freeze_time

from neural_core import get_brain_snapshot, initialize_brain, reset_brain
from neural_core.model import create_new_snapshot


class TestBrainLifecycle:

    def test_absent_before_initialization(self):
        assert get_brain_snapshot() is None

    @freeze_time("2026-01-15 10:00:00")
    def test_initialize_creates_newborn(self):
        snapshot = initialize_brain()

        assert snapshot.trained_samples == 0
        assert snapshot.current_month_head.trained_samples == 0
        assert snapshot.data_fingerprint == ""
        assert snapshot.updated_at == "2026-01-15T10:00:00.000Z"
        assert get_brain_snapshot() == snapshot

    def test_initialize_is_idempotent(self):
        with freeze_time("2026-01-15 10:00:00"):
            first = initialize_brain()
        with freeze_time("2026-03-01 10:00:00"):
            second = initialize_brain()

        assert second == first
        assert second.updated_at == "2026-01-15T10:00:00.000Z"

    def test_reset_removes_snapshot(self):
        initialize_brain()

        reset_brain()

        assert get_brain_snapshot() is None

    def test_oversized_snapshot_is_repaired_on_read(self, memory_store):
        stored = replace(create_new_snapshot("2026-01-01T00:00:00.000Z"), weights=(0.5,) * 8)
        memory_store.save(stored)

        snapshot = get_brain_snapshot()

        assert snapshot.weights == (0.5,) * 5
        assert initialize_brain() == snapshot
