"""
Per-merchant loyalty configuration.
"""
from datetime import datetime
from ..extensions import db
from ..utils.settings_defaults import default_settings, get_settings_with_defaults


class StoreConfig(db.Model):
    """
    Loyalty settings for one Shopify store.

    Settings are grouped (points, tiers, redemption) and stored as JSON so new
    keys can be introduced without a migration. Read-mostly; created with
    defaults on first lookup and updated in place by configuration management.
    """
    __tablename__ = 'store_configs'

    id = db.Column(db.Integer, primary_key=True)
    shop_domain = db.Column(db.String(255), unique=True, nullable=False)

    points_settings = db.Column(db.JSON, nullable=False, default=dict)
    tier_settings = db.Column(db.JSON, nullable=False, default=dict)
    redemption_settings = db.Column(db.JSON, nullable=False, default=dict)

    active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # group name -> column attribute
    GROUP_COLUMNS = {
        'points': 'points_settings',
        'tiers': 'tier_settings',
        'redemption': 'redemption_settings',
    }

    def __repr__(self):
        return f'<StoreConfig {self.shop_domain}>'

    @classmethod
    def with_defaults(cls, shop_domain: str) -> 'StoreConfig':
        defaults = default_settings()
        return cls(
            shop_domain=shop_domain,
            points_settings=defaults['points'],
            tier_settings=defaults['tiers'],
            redemption_settings=defaults['redemption'],
            active=True,
        )

    def settings(self) -> dict:
        """Stored groups merged over the defaults."""
        stored = {group: getattr(self, column) for group, column in self.GROUP_COLUMNS.items()}
        return get_settings_with_defaults(stored)

    def to_dict(self):
        return {
            'shop_domain': self.shop_domain,
            **self.settings(),
            'active': self.active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
