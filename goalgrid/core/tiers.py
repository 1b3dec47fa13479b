"""Group tier ladder: pure lookup.

Tiers follow the group's weekly completion rate and are recomputed
periodically; they are independent from challenges.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TierInfo:
    name: str
    display_name: str
    min_completion_rate: float   # 0-100, inclusive
    max_completion_rate: float   # 0-100
    icon_color: str


TIER_LADDER: tuple[TierInfo, ...] = (
    TierInfo("BRONZE", "Bronze", 0, 49.99, "#d97706"),
    TierInfo("SILVER", "Silver", 50, 59.99, "#64748b"),
    TierInfo("GOLD", "Gold", 60, 69.99, "#ca8a04"),
    TierInfo("PLATINUM", "Platinum", 70, 79.99, "#0891b2"),
    TierInfo("DIAMOND_I", "Diamond I", 80, 84.99, "#7c3aed"),
    TierInfo("DIAMOND_II", "Diamond II", 85, 89.99, "#7c3aed"),
    TierInfo("DIAMOND_III", "Diamond III", 90, 94.99, "#7c3aed"),
    TierInfo("DIAMOND_IV", "Diamond IV", 95, 99.99, "#7c3aed"),
    TierInfo("DIAMOND_V", "Diamond V", 100, 100, "#7c3aed"),
)

_TIERS_BY_NAME = {tier.name: tier for tier in TIER_LADDER}
_POSITIONS = {tier.name: index for index, tier in enumerate(TIER_LADDER)}


def calculate_tier_from_completion_rate(completion_rate: float) -> TierInfo:
    """Tier whose band contains the (clamped) rate.

    Values falling between two printed band edges (e.g. 49.995) belong to
    the lower band.
    """
    rate = max(0.0, min(100.0, completion_rate))
    match = TIER_LADDER[0]
    for tier in TIER_LADDER:
        if rate >= tier.min_completion_rate:
            match = tier
    return match


def get_tier_info(tier_name: str) -> TierInfo:
    """Tier by name; unknown names fall back to the bottom of the ladder."""
    return _TIERS_BY_NAME.get(tier_name, TIER_LADDER[0])


def get_next_tier(tier_name: str) -> TierInfo | None:
    """The tier above, or None at the top (or for an unknown name)."""
    index = _POSITIONS.get(tier_name)
    if index is None or index == len(TIER_LADDER) - 1:
        return None
    return TIER_LADDER[index + 1]


def was_tier_upgraded(old_tier: str, new_tier: str) -> bool:
    return _POSITIONS.get(new_tier, -1) > _POSITIONS.get(old_tier, -1)


def format_completion_rate(rate: float) -> str:
    return f"{int(rate + 0.5)}%"
