"""
Store configuration service.

Per-merchant loyalty settings: created with defaults on first lookup, merged
group by group on update, and served to the engine as an immutable snapshot
out of a time-boxed cache.
"""
from dataclasses import dataclass, field, asdict
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import StoreConfig
from ..utils.cache import cache, cache_key
from ..utils.exceptions import ConfigurationError, ValidationError
from ..utils.settings_defaults import DEFAULT_SETTINGS, SETTINGS_GROUPS
from .tier_classifier import validate_thresholds

# Keys that must hold a non-negative integer
NON_NEGATIVE_INT_KEYS = {
    'points': ('points_per_order', 'welcome_bonus'),
    'tiers': (),
    'redemption': ('max_options',),
}
# Keys that must hold a positive integer
POSITIVE_INT_KEYS = {
    'points': (),
    'tiers': (),
    'redemption': ('redemption_rate', 'minimum_redemption'),
}


@dataclass(frozen=True)
class PointsSettings:
    """Snapshot of one merchant's settings as the engine consumes them."""
    shop_domain: str
    points_per_order: int = 50
    welcome_bonus: int = 100
    use_static_points: bool = True
    points_per_dollar: Decimal = Decimal('0')
    minimum_order_amount: Decimal = Decimal('0')
    points_expiry_days: Optional[int] = 365
    tier_thresholds: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_SETTINGS['tiers']))
    redemption_rate: int = 100
    minimum_redemption: int = 100
    max_options: int = 10

    @classmethod
    def from_settings(cls, shop_domain: str, settings: dict) -> 'PointsSettings':
        points = settings['points']
        redemption = settings['redemption']
        expiry = points.get('points_expiry_days')
        return cls(
            shop_domain=shop_domain,
            points_per_order=int(points['points_per_order']),
            welcome_bonus=int(points['welcome_bonus']),
            use_static_points=bool(points['use_static_points']),
            points_per_dollar=Decimal(str(points['points_per_dollar'] or 0)),
            minimum_order_amount=Decimal(str(points['minimum_order_amount'] or 0)),
            points_expiry_days=int(expiry) if expiry else None,
            tier_thresholds=dict(settings['tiers']),
            redemption_rate=int(redemption['redemption_rate']),
            minimum_redemption=int(redemption['minimum_redemption']),
            max_options=int(redemption['max_options']),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['points_per_dollar'] = float(self.points_per_dollar)
        data['minimum_order_amount'] = float(self.minimum_order_amount)
        return data


class StoreConfigService:
    """
    Read and update merchant settings.

    Usage:
        service = StoreConfigService()
        settings = service.get_settings('example.myshopify.com')
        service.update_config('example.myshopify.com', {'points': {'points_per_order': 75}})
    """

    def get_config(self, shop_domain: str) -> StoreConfig:
        """Load the store's config, persisting defaults on first access."""
        config = StoreConfig.query.filter_by(shop_domain=shop_domain).first()
        if config:
            return config

        config = StoreConfig.with_defaults(shop_domain)
        db.session.add(config)
        try:
            db.session.commit()
        except IntegrityError:
            # Another request created it first
            db.session.rollback()
            config = StoreConfig.query.filter_by(shop_domain=shop_domain).first()
            if config is None:
                raise
            return config

        current_app.logger.info(f'[Config] Created default loyalty settings for {shop_domain}')
        return config

    def update_config(self, shop_domain: str, partial: Dict[str, Any]) -> StoreConfig:
        """
        Merge a partial update into the stored groups.

        Only the keys present in each provided group change. Unknown groups or
        keys are rejected. A tier table that is not strictly increasing is
        stored as given and logged; classification degrades to bronze until it
        is fixed.
        """
        if not isinstance(partial, dict):
            raise ValidationError('Settings update must be an object', 'settings')

        updates = {}
        active = partial.get('active')
        for group, values in partial.items():
            if group == 'active':
                if not isinstance(values, bool):
                    raise ValidationError('active must be true or false', 'active')
                continue
            if group not in SETTINGS_GROUPS:
                raise ValidationError(f"Unknown settings group '{group}'", 'settings')
            if not isinstance(values, dict):
                raise ValidationError(f"Settings group '{group}' must be an object", group)
            self._validate_group(group, values)
            updates[group] = values

        config = self.get_config(shop_domain)
        for group, values in updates.items():
            column = StoreConfig.GROUP_COLUMNS[group]
            # Reassign so SQLAlchemy sees the JSON change
            merged = {**DEFAULT_SETTINGS[group], **(getattr(config, column) or {}), **values}
            setattr(config, column, merged)
        if active is not None:
            config.active = active

        if 'tiers' in updates:
            try:
                validate_thresholds(config.tier_settings)
            except ConfigurationError as e:
                current_app.logger.warning(
                    f'[Config] {shop_domain} saved invalid tier thresholds, '
                    f'customers will classify as bronze: {e.message}'
                )

        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        cache.delete(self._cache_key(shop_domain))
        current_app.logger.info(f'[Config] Updated {", ".join(sorted(updates)) or "status"} for {shop_domain}')
        return config

    def get_settings(self, shop_domain: str) -> PointsSettings:
        """Settings snapshot, served from cache when fresh."""
        key = self._cache_key(shop_domain)
        settings = cache.get(key)
        if settings is None:
            settings = self.get_config(shop_domain).settings()
            cache.set(key, settings, timeout=current_app.config.get('CONFIG_CACHE_TIMEOUT', 300))
        return PointsSettings.from_settings(shop_domain, settings)

    def _validate_group(self, group: str, values: dict) -> None:
        known = DEFAULT_SETTINGS[group]
        for key, value in values.items():
            if key not in known:
                raise ValidationError(f"Unknown setting '{group}.{key}'", key)

            if key in NON_NEGATIVE_INT_KEYS[group] and not _is_int(value, minimum=0):
                raise ValidationError(f'{key} must be a non-negative integer', key)
            if key in POSITIVE_INT_KEYS[group] and not _is_int(value, minimum=1):
                raise ValidationError(f'{key} must be a positive integer', key)

        if group == 'points':
            if 'use_static_points' in values and not isinstance(values['use_static_points'], bool):
                raise ValidationError('use_static_points must be true or false', 'use_static_points')
            for key in ('points_per_dollar', 'minimum_order_amount'):
                if key in values and not _is_non_negative_number(values[key]):
                    raise ValidationError(f'{key} must be a non-negative number', key)
            expiry = values.get('points_expiry_days')
            if expiry is not None and not _is_int(expiry, minimum=1):
                raise ValidationError('points_expiry_days must be a positive integer or null', 'points_expiry_days')

    @staticmethod
    def _cache_key(shop_domain: str) -> str:
        return cache_key('store_settings', shop=shop_domain)


def _is_int(value, minimum: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= minimum


def _is_non_negative_number(value) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return Decimal(str(value)) >= 0
    except (InvalidOperation, ValueError):
        return False
