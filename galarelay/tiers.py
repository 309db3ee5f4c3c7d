from __future__ import annotations
from types import MappingProxyType
from typing import Mapping

GOLD = "gold"
SILVER = "silver"
BRONZE = "bronze"
GA = "ga"
SUPPORT_FAMILY = "support_family"
PLATINUM = "platinum"

TIER_LABEL = MappingProxyType({
    GOLD: "Gold Sponsor",
    SILVER: "Silver Sponsor",
    BRONZE: "Bronze Sponsor",
    GA: "General Admission",
    SUPPORT_FAMILY: "Support-a-Family",
    PLATINUM: "Platinum Sponsor",
})

SEATS_BY_TIER = MappingProxyType({
    GOLD: 8,
    SILVER: 8,
    BRONZE: 8,
    GA: 1,
    SUPPORT_FAMILY: 8,
    PLATINUM: 8,
})

# buyers of these tiers get the "table buyer" CRM tag
SEATED_TIERS = frozenset({GOLD, SILVER, BRONZE, SUPPORT_FAMILY})

REQUIRED_PRICED_TIERS = (GOLD, SILVER, BRONZE, GA)
OPTIONAL_PRICED_TIERS = (SUPPORT_FAMILY,)


def tier_label(tier: str) -> str:
    return TIER_LABEL.get(tier, tier)


def default_seats(tier: str) -> int:
    return SEATS_BY_TIER.get(tier, 1)


def is_seated(tier: str) -> bool:
    return tier in SEATED_TIERS


def price_env_name(mode: str, tier: str) -> str:
    # TEST_PRICE_GOLD, LIVE_PRICE_SUPPORT_FAMILY, ...
    return f"{mode.upper()}_PRICE_{tier.upper()}"


def freeze_prices(prices: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType({t: p for t, p in prices.items() if p})
