"""
Ledger store.

Append-only persistence for points events. Appends flush inside the caller's
unit of work; the caller owns commit and rollback so an entry and the balance
change it explains always land together.
"""
from typing import Any, Dict, List

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CustomerAccount, LedgerEntry, LedgerEntryKind
from ..utils.exceptions import DuplicateEntryError, ValidationError

RECENT_ACTIVITY_LIMIT = 5


class LedgerStore:
    """
    Ledger access for one shop.

    Usage:
        ledger = LedgerStore(shop_domain)
        ledger.append(LedgerEntry(customer_id='123', kind='earned', points=50, dedupe_key='order-1'))
        entries = ledger.list_by_customer('123', limit=20)
    """

    def __init__(self, shop_domain: str):
        self.shop_domain = shop_domain

    def exists(self, customer_id: str, dedupe_key: str) -> bool:
        return db.session.query(
            LedgerEntry.query.filter_by(
                shop_domain=self.shop_domain,
                customer_id=str(customer_id),
                dedupe_key=dedupe_key,
            ).exists()
        ).scalar()

    def append(self, entry: LedgerEntry) -> int:
        """
        Add an entry to the current unit of work and return its id.

        Must be called while holding the customer's lock. An entry whose
        dedupe_key is already recorded raises DuplicateEntryError; a conflict
        that only surfaces at flush time rolls the unit of work back before
        raising, so nothing from it is kept.
        """
        entry.shop_domain = self.shop_domain
        entry.customer_id = str(entry.customer_id)
        kind = LedgerEntryKind(entry.kind).value
        entry.kind = kind

        if entry.points is None or (kind != LedgerEntryKind.ADJUSTED.value and entry.points <= 0):
            raise ValidationError(f'{kind} entries need a positive point magnitude', 'points')
        if kind == LedgerEntryKind.ADJUSTED.value and entry.points == 0:
            raise ValidationError('Adjustment cannot be zero', 'points')

        if entry.dedupe_key is not None and self.exists(entry.customer_id, entry.dedupe_key):
            raise DuplicateEntryError(entry.customer_id, entry.dedupe_key)

        db.session.add(entry)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateEntryError(entry.customer_id, entry.dedupe_key)
        return entry.id

    def list_by_customer(self, customer_id: str, limit: int = 20, offset: int = 0) -> List[LedgerEntry]:
        """Entries for a customer, newest first."""
        return LedgerEntry.query.filter_by(
            shop_domain=self.shop_domain,
            customer_id=str(customer_id),
        ).order_by(
            LedgerEntry.created_at.desc(),
            LedgerEntry.id.desc(),
        ).offset(max(offset, 0)).limit(max(limit, 0)).all()

    def replay(self, customer_id: str) -> Dict[str, int]:
        """Recompute a customer's balances from their entries alone."""
        entries = LedgerEntry.query.filter_by(
            shop_domain=self.shop_domain,
            customer_id=str(customer_id),
        ).order_by(LedgerEntry.created_at, LedgerEntry.id).all()

        totals = {
            'current_balance': 0,
            'total_earned': 0,
            'total_redeemed': 0,
            'total_expired': 0,
            'entry_count': len(entries),
        }
        for entry in entries:
            totals['current_balance'] += entry.balance_delta
            if entry.kind == LedgerEntryKind.EARNED.value:
                totals['total_earned'] += entry.points
            elif entry.kind == LedgerEntryKind.REDEEMED.value:
                totals['total_redeemed'] += entry.points
            elif entry.kind == LedgerEntryKind.EXPIRED.value:
                totals['total_expired'] += entry.points
            elif entry.points > 0:
                totals['total_earned'] += entry.points
        return totals

    def aggregate(self) -> Dict[str, Any]:
        """
        Reporting totals for the shop.

        Point sums come from the ledger; customer count, tier distribution and
        outstanding points come from the account rows.
        """
        kind_totals = dict(
            db.session.query(LedgerEntry.kind, func.coalesce(func.sum(LedgerEntry.points), 0))
            .filter(LedgerEntry.shop_domain == self.shop_domain)
            .group_by(LedgerEntry.kind)
            .all()
        )
        adjusted_in, adjusted_out = db.session.query(
            func.coalesce(func.sum(case((LedgerEntry.points > 0, LedgerEntry.points), else_=0)), 0),
            func.coalesce(func.sum(case((LedgerEntry.points < 0, -LedgerEntry.points), else_=0)), 0),
        ).filter(
            LedgerEntry.shop_domain == self.shop_domain,
            LedgerEntry.kind == LedgerEntryKind.ADJUSTED.value,
        ).one()

        customer_count, outstanding = db.session.query(
            func.count(CustomerAccount.id),
            func.coalesce(func.sum(CustomerAccount.current_balance), 0),
        ).filter(CustomerAccount.shop_domain == self.shop_domain).one()

        tier_distribution = dict(
            db.session.query(CustomerAccount.tier, func.count(CustomerAccount.id))
            .filter(CustomerAccount.shop_domain == self.shop_domain)
            .group_by(CustomerAccount.tier)
            .all()
        )

        recent = LedgerEntry.query.filter_by(shop_domain=self.shop_domain).order_by(
            LedgerEntry.created_at.desc(), LedgerEntry.id.desc()
        ).limit(RECENT_ACTIVITY_LIMIT).all()

        earned = int(kind_totals.get(LedgerEntryKind.EARNED.value, 0))
        return {
            'total_customers': int(customer_count),
            'total_points_issued': earned + int(adjusted_in),
            'total_points_redeemed': int(kind_totals.get(LedgerEntryKind.REDEEMED.value, 0)),
            'total_points_expired': int(kind_totals.get(LedgerEntryKind.EXPIRED.value, 0)),
            'total_points_adjusted_out': int(adjusted_out),
            'points_outstanding': int(outstanding),
            'tier_distribution': {tier: int(count) for tier, count in tier_distribution.items()},
            'recent_activity': [entry.to_dict() for entry in recent],
        }
