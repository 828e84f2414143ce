# src/core/pricing/money.py
"""
Округление денежных сумм.

Половины округляются вверх (2.5 -> 3), а не к чётному, как встроенный round().
"""

from __future__ import annotations

import math


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def round_to_cents(value: float) -> float:
    """Округляет цену до центов."""
    return round_half_up(value * 100) / 100


def to_cents(amount: float) -> int:
    """Переводит сумму в валюте в целые центы."""
    return round_half_up(amount * 100)
