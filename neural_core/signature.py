"""
Input Signature Module
Cheap change detector over raw records, used by callers to skip the dataset
builder and training pipeline when nothing relevant changed.
"""

from typing import Mapping, Sequence

from .features import FNV_OFFSET_BASIS, FNV_PRIME

_TYPE_CODES = {"income": 1}
_EXPENSE_CODE = 2
_SUPERFLUOUS_CODES = {True: 19, False: 23}
_SUPERFLUOUS_UNSET = 29
_NATURE_CODES = {"essential": 11, "comfort": 13}
_SUPERFLUOUS_NATURE = 17


def _fold(h: int, value: int) -> int:
    h ^= int(value) & 0xFFFFFFFF
    return (h * FNV_PRIME) & 0xFFFFFFFF


def _fold_text(h: int, text: str) -> int:
    encoded = (text or "").encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        h = _fold(h, encoded[i] | (encoded[i + 1] << 8))
    return h


def compute_input_signature(
    transactions: Sequence[Mapping],
    categories: Sequence[Mapping],
    period: str,
) -> str:
    """
    Order-sensitive signature of the raw evolve inputs

    Args:
        transactions: Transaction mappings as passed to the engine
        categories: Category mappings as passed to the engine
        period: Inference period the caller is interested in

    Returns:
        '{period}:{transactions}:{categories}:{hex}' signature string
    """
    h = FNV_OFFSET_BASIS

    for transaction in transactions:
        h = _fold(h, transaction.get("timestamp") or 0)
        h = _fold(h, transaction.get("amount_cents") or 0)
        h = _fold(h, _TYPE_CODES.get(transaction.get("type"), _EXPENSE_CODE))
        h = _fold_text(h, transaction.get("category_id"))
        flag = transaction.get("is_superfluous")
        code = _SUPERFLUOUS_CODES[flag] if isinstance(flag, bool) else _SUPERFLUOUS_UNSET
        h = _fold(h, code)

    for category in categories:
        h = _fold_text(h, category.get("id"))
        h = _fold(h, _NATURE_CODES.get(category.get("spending_nature"), _SUPERFLUOUS_NATURE))

    return f"{period}:{len(transactions)}:{len(categories)}:{h:x}"
