"""
Default merchant loyalty settings.

Shared between the store configuration service and the CLI to avoid circular imports.
"""
from copy import deepcopy

# Tier labels, lowest first
TIER_ORDER = ('bronze', 'silver', 'gold', 'platinum')


# Default settings structure
DEFAULT_SETTINGS = {
    'points': {
        'points_per_order': 50,        # Flat award per qualifying order
        'welcome_bonus': 100,          # One-time credit when an account is first created
        'use_static_points': True,     # Flat award; False switches to points_per_dollar
        'points_per_dollar': 0,        # Only used when use_static_points is False
        'minimum_order_amount': 0,     # Only gates proportional mode
        'points_expiry_days': 365,     # Inactivity window before a balance expires (None = never)
    },
    'tiers': {
        # Minimum total_earned for each tier; must be strictly increasing
        'bronze': 0,
        'silver': 500,
        'gold': 1500,
        'platinum': 5000,
    },
    'redemption': {
        'redemption_rate': 100,        # Points per 1 unit of discount currency
        'minimum_redemption': 100,     # Smallest redeemable block; redemptions are multiples of it
        'max_options': 10,             # Point blocks offered at checkout
    },
}

SETTINGS_GROUPS = tuple(DEFAULT_SETTINGS.keys())


def get_settings_with_defaults(settings: dict) -> dict:
    """Merge stored merchant settings with defaults."""
    settings = settings or {}
    result = {}
    for key, default_value in DEFAULT_SETTINGS.items():
        if isinstance(default_value, dict):
            result[key] = {**default_value, **(settings.get(key) or {})}
        else:
            result[key] = settings.get(key, default_value)
    return result


def default_settings() -> dict:
    """Fresh copy of the defaults, safe to mutate and persist."""
    return deepcopy(DEFAULT_SETTINGS)
