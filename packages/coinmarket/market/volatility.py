"""Per-category volatility bounds for the price random walk.

Each tick draws ``drift`` uniformly from ``[-bound, bound]`` and applies
``price * (1 + drift)``.  Bounds are Decimal fractions; the draw converts the
random source's float at the boundary so price arithmetic stays Decimal.

Default bounds
--------------
  low_risk  0.0025   (±0.25 % per tick)
  fake      0.05     (±5 %)
  shitcoin  0.15     (±15 %)
  other     0.01     (fallback for categories without an entry)
"""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Optional, Protocol

from .assets import RiskCategory

_ZERO = Decimal("0")
_TWO = Decimal("2")

DEFAULT_BOUNDS: dict[str, Decimal] = {
    RiskCategory.LOW_RISK: Decimal("0.0025"),
    RiskCategory.FAKE: Decimal("0.05"),
    RiskCategory.SHITCOIN: Decimal("0.15"),
}

DEFAULT_FALLBACK_BOUND = Decimal("0.01")


class RandomSource(Protocol):
    """Anything with ``random() -> float`` in ``[0, 1)`` (e.g. ``random.Random``)."""

    def random(self) -> float: ...


class VolatilityTable:
    """Fixed mapping risk category → symmetric volatility bound."""

    def __init__(
        self,
        overrides: Optional[Mapping[str, Decimal]] = None,
        default: Decimal = DEFAULT_FALLBACK_BOUND,
    ) -> None:
        bounds = dict(DEFAULT_BOUNDS)
        for category, bound in (overrides or {}).items():
            bounds[RiskCategory.normalize(category)] = Decimal(str(bound))
        default = Decimal(str(default))

        for category, bound in bounds.items():
            if not bound.is_finite() or bound < _ZERO:
                raise ValueError(
                    f"volatility bound for {category!r} must be non-negative; got {bound}"
                )
        if not default.is_finite() or default < _ZERO:
            raise ValueError(f"default volatility bound must be non-negative; got {default}")

        self._bounds = bounds
        self._default = default

    def bound_for(self, category: str) -> Decimal:
        return self._bounds.get(category, self._default)

    def to_dict(self) -> dict[str, str]:
        out = {category: str(bound) for category, bound in sorted(self._bounds.items())}
        out["default"] = str(self._default)
        return out


def draw_drift(bound: Decimal, rng: RandomSource) -> Decimal:
    """Draw a drift uniformly from ``[-bound, bound]``.

    Examples:
        >>> class Fixed:
        ...     def random(self): return 0.75
        >>> draw_drift(Decimal("0.1"), Fixed())
        Decimal('0.050')
    """
    if bound == _ZERO:
        return _ZERO
    u = Decimal(str(rng.random()))
    return -bound + _TWO * bound * u
