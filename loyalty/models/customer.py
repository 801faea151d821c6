"""
Customer points account - the balance projection row.
"""
from datetime import datetime
from ..extensions import db


class CustomerAccount(db.Model):
    """
    Per-customer points aggregate, kept in step with the ledger.

    Every change to these counters happens in the same unit of work as the
    ledger append that explains it, so the row can always be rebuilt by
    replaying the customer's ledger entries.

    Email handling:
    - email_is_placeholder=True means the address was synthesized because the
      order carried none; it is replaced by the first real address seen.
    """
    __tablename__ = 'customer_accounts'

    id = db.Column(db.Integer, primary_key=True)
    shop_domain = db.Column(db.String(255), nullable=False)
    customer_id = db.Column(db.String(64), nullable=False)  # Shopify customer ID

    # Contact details (best effort)
    email = db.Column(db.String(255))
    email_is_placeholder = db.Column(db.Boolean, default=False, nullable=False)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))

    # Balances
    current_balance = db.Column(db.Integer, default=0, nullable=False)
    total_earned = db.Column(db.Integer, default=0, nullable=False)
    total_redeemed = db.Column(db.Integer, default=0, nullable=False)
    total_expired = db.Column(db.Integer, default=0, nullable=False)

    tier = db.Column(db.String(20), default='bronze', nullable=False)  # bronze, silver, gold, platinum

    # Activity tracking
    last_earned_at = db.Column(db.DateTime)

    # Timestamps
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('shop_domain', 'customer_id', name='uq_shop_customer'),
        db.CheckConstraint('current_balance >= 0', name='ck_balance_non_negative'),
        db.Index('ix_customer_accounts_shop_email', 'shop_domain', 'email'),
        db.Index('ix_customer_accounts_shop_balance', 'shop_domain', 'current_balance'),
    )

    def __repr__(self):
        return f'<CustomerAccount {self.customer_id}: {self.current_balance} pts ({self.tier})>'

    @property
    def exists(self) -> bool:
        """False for the transient zero-balance account handed out for never-seen customers."""
        return self.id is not None

    @property
    def display_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip() or 'Unknown'

    def to_dict(self):
        return {
            'customer_id': self.customer_id,
            'email': self.email,
            'email_is_placeholder': bool(self.email_is_placeholder),
            'first_name': self.first_name,
            'last_name': self.last_name,
            'current_balance': self.current_balance or 0,
            'total_earned': self.total_earned or 0,
            'total_redeemed': self.total_redeemed or 0,
            'total_expired': self.total_expired or 0,
            'tier': self.tier or 'bronze',
            'exists': self.exists,
            'last_earned_at': self.last_earned_at.isoformat() if self.last_earned_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
