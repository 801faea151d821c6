"""
Tier classification.

Pure functions mapping lifetime earned points to a tier label. Tiers depend
only on total_earned, so redeeming points never demotes a customer.
"""
from typing import Dict, Optional, Tuple

from ..utils.exceptions import ConfigurationError
from ..utils.logging_config import get_logger
from ..utils.settings_defaults import TIER_ORDER

logger = get_logger(__name__)

DEFAULT_TIER = TIER_ORDER[0]


def validate_thresholds(table: Dict[str, int]) -> Dict[str, int]:
    """
    Check a threshold table and return it normalized to TIER_ORDER.

    Raises:
        ConfigurationError: missing tier, non-integer value, bronze not 0,
            or thresholds not strictly increasing
    """
    if not isinstance(table, dict):
        raise ConfigurationError('Tier thresholds must be a mapping of tier to minimum points')

    normalized = {}
    for tier in TIER_ORDER:
        if tier not in table:
            raise ConfigurationError(f"Tier threshold for '{tier}' is missing")
        value = table[tier]
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigurationError(f"Tier threshold for '{tier}' must be an integer, got {value!r}")
        normalized[tier] = value

    if normalized[DEFAULT_TIER] != 0:
        raise ConfigurationError(f"Tier threshold for '{DEFAULT_TIER}' must be 0")

    for lower, higher in zip(TIER_ORDER, TIER_ORDER[1:]):
        if normalized[higher] <= normalized[lower]:
            raise ConfigurationError(
                f"Tier thresholds must strictly increase: "
                f"{lower}={normalized[lower]} >= {higher}={normalized[higher]}"
            )

    return normalized


def classify_tier(total_earned: int, table: Dict[str, int]) -> str:
    """
    Highest tier whose threshold is <= total_earned.

    An invalid table is logged as a configuration error and classifies
    everyone as bronze rather than guessing.
    """
    try:
        thresholds = validate_thresholds(table)
    except ConfigurationError as e:
        logger.error(f'[Tiers] Invalid tier configuration, falling back to {DEFAULT_TIER}: {e.message}')
        return DEFAULT_TIER

    earned = total_earned or 0
    tier = DEFAULT_TIER
    for name in TIER_ORDER:
        if earned >= thresholds[name]:
            tier = name
    return tier


def next_tier(total_earned: int, table: Dict[str, int]) -> Tuple[Optional[str], Optional[int]]:
    """
    Progress helper: (next tier, points still needed).

    Returns (None, None) at the top tier or when the table is invalid.
    """
    try:
        thresholds = validate_thresholds(table)
    except ConfigurationError:
        return None, None

    earned = total_earned or 0
    for name in TIER_ORDER:
        if thresholds[name] > earned:
            return name, thresholds[name] - earned
    return None, None
