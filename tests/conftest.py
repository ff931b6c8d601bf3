"""Shared pytest configuration for the project test suite."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Generator

import pytest


# Ensure the repository root (which contains the ``neural_core`` package) is importable.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from neural_core.config import BrainSettings  # noqa: E402
from neural_core.storage import SnapshotStore, set_default_store  # noqa: E402
from tests.factories import expense, income  # noqa: E402


@pytest.fixture(autouse=True)
def memory_store() -> Generator[SnapshotStore, None, None]:
    """Give every test a fresh in-memory process-wide snapshot store."""
    store = SnapshotStore(BrainSettings(storage_backend="memory"))
    set_default_store(store)
    try:
        yield store
    finally:
        set_default_store(None)


@pytest.fixture
def categories() -> list:
    return [
        {"id": "rent", "spending_nature": "essential"},
        {"id": "food", "spending_nature": "comfort"},
        {"id": "fun", "spending_nature": "superfluous"},
    ]


@pytest.fixture
def four_month_history() -> list:
    """Four regular months of income, rent, food and leisure"""
    return [
        income(300000, "2026-01-03"),
        expense(120000, "rent", "2026-01-05"),
        expense(42000, "food", "2026-01-12"),
        expense(20000, "fun", "2026-01-18", is_superfluous=True),

        income(302000, "2026-02-03"),
        expense(121000, "rent", "2026-02-05"),
        expense(41000, "food", "2026-02-12"),
        expense(22000, "fun", "2026-02-18", is_superfluous=True),

        income(306000, "2026-03-03"),
        expense(122000, "rent", "2026-03-05"),
        expense(44000, "food", "2026-03-12"),
        expense(25000, "fun", "2026-03-18", is_superfluous=True),

        income(307000, "2026-04-03"),
        expense(123000, "rent", "2026-04-05"),
        expense(43000, "food", "2026-04-12"),
        expense(24000, "fun", "2026-04-18", is_superfluous=True),
    ]
