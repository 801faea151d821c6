"""
Points ledger - append-only record of every point-affecting event.
"""
from datetime import datetime
from enum import Enum
from ..extensions import db


class LedgerEntryKind(str, Enum):
    EARNED = 'earned'
    REDEEMED = 'redeemed'
    EXPIRED = 'expired'
    ADJUSTED = 'adjusted'


# dedupe_key used for the one-time welcome credit
WELCOME_BONUS_KEY = 'welcome_bonus'


class LedgerEntry(db.Model):
    """
    Immutable points event.

    Points are a positive magnitude for earned/redeemed/expired entries and
    signed for adjusted entries. Rows are never updated or deleted; a
    correction is a new adjusted entry.

    dedupe_key is the idempotency key: the order id for order-sourced earned
    entries, WELCOME_BONUS_KEY for the welcome credit, NULL otherwise. The
    unique constraint makes webhook redelivery a storage-level conflict.
    """
    __tablename__ = 'points_ledger'

    id = db.Column(db.Integer, primary_key=True)
    shop_domain = db.Column(db.String(255), nullable=False)
    customer_id = db.Column(db.String(64), nullable=False)  # Not required to pre-exist

    kind = db.Column(db.String(20), nullable=False)  # earned, redeemed, expired, adjusted
    points = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.String(64))
    order_total = db.Column(db.Numeric(12, 2))
    description = db.Column(db.String(500))
    # 'metadata' is reserved on declarative models
    entry_metadata = db.Column('metadata', db.JSON, default=dict)

    dedupe_key = db.Column(db.String(100))

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('shop_domain', 'customer_id', 'dedupe_key', name='uq_ledger_dedupe'),
        db.Index('ix_points_ledger_customer_created', 'shop_domain', 'customer_id', 'created_at'),
        db.Index('ix_points_ledger_shop_kind', 'shop_domain', 'kind'),
    )

    def __repr__(self):
        return f'<LedgerEntry {self.id}: {self.kind} {self.points} for {self.customer_id}>'

    @property
    def balance_delta(self) -> int:
        """Signed effect of this entry on current_balance."""
        if self.kind in (LedgerEntryKind.REDEEMED.value, LedgerEntryKind.EXPIRED.value):
            return -self.points
        return self.points

    def to_dict(self):
        return {
            'id': self.id,
            'customer_id': self.customer_id,
            'kind': self.kind,
            'points': self.points,
            'order_id': self.order_id,
            'order_total': float(self.order_total) if self.order_total is not None else None,
            'description': self.description,
            'metadata': self.entry_metadata or {},
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
