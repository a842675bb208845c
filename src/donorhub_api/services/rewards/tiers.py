"""Discount tier classification by point balance."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Protocol, Sequence


class TierLike(Protocol):
    name: str
    min_points: int
    discount_percent: int


@dataclass(frozen=True, slots=True)
class TierBand:
    """Resolved tier with its derived upper bound."""

    name: str
    min_points: int
    discount_percent: int
    max_points: int | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "minPoints": self.min_points,
            "maxPoints": self.max_points,
            "discountPercent": self.discount_percent,
        }


DEFAULT_TIER = TierBand(name="Standard", min_points=0, discount_percent=0, max_points=None)


def build_tier_bands(tiers: Iterable[TierLike]) -> list[TierBand]:
    """Sort tier configs ascending and derive each tier's max from its successor."""

    ordered = sorted(
        (
            TierBand(
                name=str(tier.name),
                min_points=int(tier.min_points or 0),
                discount_percent=int(tier.discount_percent or 0),
            )
            for tier in tiers
        ),
        key=lambda band: band.min_points,
    )
    if not ordered:
        return [DEFAULT_TIER]

    bands: list[TierBand] = []
    for index, band in enumerate(ordered):
        successor = ordered[index + 1] if index + 1 < len(ordered) else None
        max_points = successor.min_points - 1 if successor is not None else None
        bands.append(replace(band, max_points=max_points))
    return bands


def classify(points: int, tiers: Iterable[TierLike] | Sequence[TierBand]) -> TierBand:
    """Return the highest tier whose minimum is covered by ``points``.

    Falls back to the lowest configured tier (or a 0% default when nothing is
    configured), so the result is always a tier.
    """

    bands = build_tier_bands(tiers)
    for band in reversed(bands):
        if band.min_points <= points:
            return band
    return bands[0]


__all__ = ["DEFAULT_TIER", "TierBand", "TierLike", "build_tier_bands", "classify"]
