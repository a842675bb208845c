import pytest

from donorhub_api.services.rewards import DEFAULT_TIER, TierBand, classify
from donorhub_api.services.rewards.tiers import build_tier_bands

TIERS = [
    TierBand(name="Gold", min_points=1000, discount_percent=15),
    TierBand(name="Bronze", min_points=0, discount_percent=5),
    TierBand(name="Silver", min_points=500, discount_percent=10),
]


@pytest.mark.parametrize(
    ("points", "expected"),
    [
        (0, "Bronze"),
        (499, "Bronze"),
        (500, "Silver"),
        (999, "Silver"),
        (1000, "Gold"),
        (25_000, "Gold"),
    ],
)
def test_classify_picks_highest_covered_tier(points: int, expected: str) -> None:
    assert classify(points, TIERS).name == expected


def test_bands_are_sorted_with_derived_upper_bounds() -> None:
    bands = build_tier_bands(TIERS)

    assert [band.name for band in bands] == ["Bronze", "Silver", "Gold"]
    assert [band.max_points for band in bands] == [499, 999, None]
    assert bands[1].as_dict() == {
        "name": "Silver",
        "minPoints": 500,
        "maxPoints": 999,
        "discountPercent": 10,
    }


def test_balance_below_every_minimum_falls_back_to_lowest_tier() -> None:
    tiers = [
        TierBand(name="Silver", min_points=500, discount_percent=10),
        TierBand(name="Gold", min_points=1000, discount_percent=15),
    ]

    assert classify(120, tiers).name == "Silver"


def test_no_configured_tiers_yields_zero_discount_default() -> None:
    tier = classify(750, [])

    assert tier == DEFAULT_TIER
    assert tier.discount_percent == 0
