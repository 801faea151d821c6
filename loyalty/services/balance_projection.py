"""
Balance projection.

Keeps the customer_accounts row in step with the ledger. Every mutating
method appends the ledger entry that explains the change and updates the
counters in the same unit of work. Callers hold the customer's lock and own
commit/rollback.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from flask import current_app
from sqlalchemy import func, or_, and_

from ..extensions import db
from ..models import CustomerAccount, LedgerEntry, LedgerEntryKind, WELCOME_BONUS_KEY
from ..utils.exceptions import InsufficientBalanceError, ValidationError
from .ledger_store import LedgerStore
from .tier_classifier import classify_tier, DEFAULT_TIER


def placeholder_email(customer_id: str, domain: str) -> str:
    return f'customer_{customer_id}@{domain}'


class BalanceProjection:
    """
    Per-customer balances for one shop.

    Usage:
        projection = BalanceProjection(shop_domain)
        account = projection.get_balance('123')
    """

    def __init__(self, shop_domain: str, ledger: LedgerStore = None):
        self.shop_domain = shop_domain
        self.ledger = ledger or LedgerStore(shop_domain)

    # ==================== Reads ====================

    def get_account(self, customer_id: str) -> Optional[CustomerAccount]:
        return CustomerAccount.query.filter_by(
            shop_domain=self.shop_domain,
            customer_id=str(customer_id),
        ).first()

    def get_balance(self, customer_id: str) -> CustomerAccount:
        """
        The customer's account, or a transient zero-balance bronze account
        (never added to the session) for a customer with no entries.
        """
        account = self.get_account(customer_id)
        if account is not None:
            return account
        return CustomerAccount(
            shop_domain=self.shop_domain,
            customer_id=str(customer_id),
            email=None,
            email_is_placeholder=False,
            current_balance=0,
            total_earned=0,
            total_redeemed=0,
            total_expired=0,
            tier=DEFAULT_TIER,
        )

    def find_by_email(self, email: str) -> Optional[CustomerAccount]:
        if not email:
            return None
        return CustomerAccount.query.filter(
            CustomerAccount.shop_domain == self.shop_domain,
            func.lower(CustomerAccount.email) == email.strip().lower(),
        ).order_by(CustomerAccount.id).first()

    def leaderboard(self, limit: int = 10) -> List[CustomerAccount]:
        """Customers with a positive balance, highest first."""
        return CustomerAccount.query.filter(
            CustomerAccount.shop_domain == self.shop_domain,
            CustomerAccount.current_balance > 0,
        ).order_by(
            CustomerAccount.current_balance.desc(),
            CustomerAccount.id,
        ).limit(limit).all()

    def placeholder_accounts(self, limit: int = None) -> List[CustomerAccount]:
        query = CustomerAccount.query.filter_by(
            shop_domain=self.shop_domain,
            email_is_placeholder=True,
        ).order_by(CustomerAccount.id)
        if limit:
            query = query.limit(limit)
        return query.all()

    def inactive_customer_ids(self, cutoff: datetime) -> List[str]:
        """Customers holding points with no earn activity since cutoff."""
        rows = db.session.query(CustomerAccount.customer_id).filter(
            CustomerAccount.shop_domain == self.shop_domain,
            CustomerAccount.current_balance > 0,
            or_(
                CustomerAccount.last_earned_at < cutoff,
                and_(CustomerAccount.last_earned_at.is_(None), CustomerAccount.created_at < cutoff),
            ),
        ).order_by(CustomerAccount.id).all()
        return [row.customer_id for row in rows]

    def customer_ids(self) -> List[str]:
        rows = db.session.query(CustomerAccount.customer_id).filter_by(
            shop_domain=self.shop_domain
        ).order_by(CustomerAccount.id).all()
        return [row.customer_id for row in rows]

    # ==================== Writes (caller holds the customer lock) ====================

    def lock_account(self, customer_id: str) -> Optional[CustomerAccount]:
        """
        Load the account row with a row lock (SELECT ... FOR UPDATE).

        populate_existing() discards any copy already in the identity map so
        the counters reflect the latest committed values.
        """
        return CustomerAccount.query.filter_by(
            shop_domain=self.shop_domain,
            customer_id=str(customer_id),
        ).with_for_update().populate_existing().first()

    def create_account(
        self,
        customer_id: str,
        email: str = None,
        first_name: str = None,
        last_name: str = None,
    ) -> CustomerAccount:
        """Insert a zero-balance account; a missing email gets a flagged placeholder."""
        is_placeholder = not email
        if is_placeholder:
            email = placeholder_email(customer_id, current_app.config.get('PLACEHOLDER_EMAIL_DOMAIN', 'placeholder.invalid'))

        account = CustomerAccount(
            shop_domain=self.shop_domain,
            customer_id=str(customer_id),
            email=email,
            email_is_placeholder=is_placeholder,
            first_name=first_name or None,
            last_name=last_name or None,
            current_balance=0,
            total_earned=0,
            total_redeemed=0,
            total_expired=0,
            tier=DEFAULT_TIER,
        )
        db.session.add(account)
        db.session.flush()
        return account

    def reconcile_contact(
        self,
        account: CustomerAccount,
        email: str = None,
        first_name: str = None,
        last_name: str = None,
    ) -> bool:
        """
        Replace a placeholder (or missing) email with a real one and fill in
        missing names. Returns True when the email changed. No ledger entry.
        """
        changed = False
        if email and (account.email_is_placeholder or not account.email):
            current_app.logger.info(
                f'[Points] Customer {account.customer_id} email updated from {account.email} to {email}'
            )
            account.email = email
            account.email_is_placeholder = False
            changed = True
        if first_name and not account.first_name:
            account.first_name = first_name
        if last_name and not account.last_name:
            account.last_name = last_name
        return changed

    def apply_earn(
        self,
        customer_id: str,
        points: int,
        tier_thresholds: Dict[str, int],
        welcome_bonus: int = 0,
        email: str = None,
        first_name: str = None,
        last_name: str = None,
        order_id: str = None,
        order_total: Decimal = None,
        description: str = None,
        metadata: Dict[str, Any] = None,
        now: datetime = None,
    ) -> Tuple[CustomerAccount, int, Optional[str]]:
        """
        Credit an order's points.

        A first-ever earn creates the account and records the welcome bonus as
        its own entry at the same instant, before the order entry. The order
        entry is keyed on order_id, so a redelivered order raises
        DuplicateEntryError before anything changes.

        Returns:
            (account, welcome bonus credited, tier before this earn or None for a new account)
        """
        if points <= 0:
            raise ValidationError('Earned points must be positive', 'points')

        now = now or datetime.utcnow()
        order_entry = LedgerEntry(
            customer_id=customer_id,
            kind=LedgerEntryKind.EARNED.value,
            points=points,
            order_id=str(order_id) if order_id is not None else None,
            order_total=order_total,
            description=description,
            entry_metadata=metadata or {},
            dedupe_key=str(order_id) if order_id is not None else None,
            created_at=now,
        )

        account = self.lock_account(customer_id)
        previous_tier = account.tier if account else None
        welcome_credited = 0

        if account is None:
            account = self.create_account(customer_id, email, first_name, last_name)
            if welcome_bonus > 0:
                self.ledger.append(LedgerEntry(
                    customer_id=customer_id,
                    kind=LedgerEntryKind.EARNED.value,
                    points=welcome_bonus,
                    description=f'Welcome bonus - {welcome_bonus} points',
                    entry_metadata={'source': 'welcome_bonus'},
                    dedupe_key=WELCOME_BONUS_KEY,
                    created_at=now,
                ))
                welcome_credited = welcome_bonus
            self.ledger.append(order_entry)
        else:
            self.ledger.append(order_entry)
            self.reconcile_contact(account, email, first_name, last_name)

        credited = points + welcome_credited
        account.current_balance = (account.current_balance or 0) + credited
        account.total_earned = (account.total_earned or 0) + credited
        account.last_earned_at = now
        account.tier = classify_tier(account.total_earned, tier_thresholds)
        account.updated_at = now
        return account, welcome_credited, previous_tier

    def apply_debit(self, customer_id: str, points: int) -> CustomerAccount:
        """
        Reserve points for a redemption.

        Tier is left alone: it follows total_earned, which a redemption never
        reduces.
        """
        account = self.lock_account(customer_id)
        balance = account.current_balance if account else 0
        if account is None or points > balance:
            raise InsufficientBalanceError(balance, points)

        account.current_balance = balance - points
        account.total_redeemed = (account.total_redeemed or 0) + points
        account.updated_at = datetime.utcnow()
        return account

    def release_debit(self, customer_id: str, points: int) -> CustomerAccount:
        """Undo a reservation made by apply_debit."""
        account = self.lock_account(customer_id)
        if account is None:
            raise ValidationError(f'No account to release {points} points to', 'customer_id')

        account.current_balance = (account.current_balance or 0) + points
        account.total_redeemed = max((account.total_redeemed or 0) - points, 0)
        account.updated_at = datetime.utcnow()
        return account

    def apply_adjustment(
        self,
        customer_id: str,
        signed_points: int,
        tier_thresholds: Dict[str, int],
        description: str = None,
        metadata: Dict[str, Any] = None,
    ) -> Tuple[CustomerAccount, Optional[str]]:
        """
        Administrative correction. Creates the account when absent (no welcome
        bonus); a negative adjustment may not take the balance below zero.
        """
        if signed_points == 0:
            raise ValidationError('Adjustment cannot be zero', 'points')

        account = self.lock_account(customer_id)
        previous_tier = account.tier if account else None
        balance = account.current_balance if account else 0
        if signed_points < 0 and -signed_points > balance:
            raise InsufficientBalanceError(balance, -signed_points)

        if account is None:
            account = self.create_account(customer_id)

        self.ledger.append(LedgerEntry(
            customer_id=customer_id,
            kind=LedgerEntryKind.ADJUSTED.value,
            points=signed_points,
            description=description,
            entry_metadata=metadata or {},
        ))

        account.current_balance = balance + signed_points
        if signed_points > 0:
            account.total_earned = (account.total_earned or 0) + signed_points
        account.tier = classify_tier(account.total_earned, tier_thresholds)
        account.updated_at = datetime.utcnow()
        return account, previous_tier

    def apply_expiry(
        self,
        customer_id: str,
        inactive_since: datetime = None,
        description: str = None,
        metadata: Dict[str, Any] = None,
    ) -> int:
        """
        Expire the customer's whole balance. Returns the points expired.

        With inactive_since, a customer who earned on or after that instant is
        left alone (activity may land between the sweep query and the lock).
        """
        account = self.lock_account(customer_id)
        if account is None or not account.current_balance:
            return 0
        if inactive_since is not None:
            last_activity = account.last_earned_at or account.created_at
            if last_activity is not None and last_activity >= inactive_since:
                return 0

        points = account.current_balance
        self.ledger.append(LedgerEntry(
            customer_id=customer_id,
            kind=LedgerEntryKind.EXPIRED.value,
            points=points,
            description=description or f'{points} points expired after inactivity',
            entry_metadata=metadata or {},
        ))

        account.current_balance = 0
        account.total_expired = (account.total_expired or 0) + points
        account.updated_at = datetime.utcnow()
        return points
