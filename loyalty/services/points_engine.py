"""
Points Engine.

Orchestrates crediting, redemption and adjustment for one shop:
- credit_order: idempotent per (customer, order) under at-least-once delivery
- redeem: validate, reserve, issue externally, then record or roll back
- adjust: administrative corrections

Every mutation of a customer's balance runs under that customer's lock and
commits the ledger entry together with the projection change. Different
customers never contend.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from enum import Enum
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CustomerAccount, LedgerEntry, LedgerEntryKind
from ..utils.exceptions import (
    CustomerNotFoundError,
    DuplicateEntryError,
    InsufficientBalanceError,
    InvalidRedemptionAmountError,
    IssuanceFailedError,
    ValidationError,
)
from ..utils.locks import CustomerLockRegistry, customer_locks
from .balance_projection import BalanceProjection
from .config_service import PointsSettings, StoreConfigService
from .discount_issuer import DiscountIssuer, IssuedDiscount, ShopifyDiscountIssuer
from .ledger_store import LedgerStore
from .shopify_client import ShopifyClient
from .tier_classifier import next_tier

# Writing the redeemed entry is retried once before the reservation is released
RECORD_ATTEMPTS = 2


# ==================== Inputs & results ====================

@dataclass(frozen=True)
class OrderEvent:
    """An order as delivered by the webhook layer."""
    order_id: str
    customer_id: Optional[str]
    order_total: Decimal = Decimal('0')
    order_number: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_shopify_payload(cls, payload: Dict[str, Any]) -> 'OrderEvent':
        """Build an event from an orders/create webhook body."""
        if not isinstance(payload, dict) or payload.get('id') is None:
            raise ValidationError('Order payload is missing an id', 'order_id')

        customer = payload.get('customer') or {}
        if not isinstance(customer, dict):
            raise ValidationError(f'Order customer must be an object, got {type(customer).__name__}', 'customer')
        customer_id = customer.get('id')

        raw_total = payload.get('total_price') or payload.get('current_total_price') or '0'
        try:
            total = Decimal(str(raw_total))
        except InvalidOperation:
            raise ValidationError(f'Invalid order total {raw_total!r}', 'order_total')
        if not total.is_finite() or total < 0:
            raise ValidationError(f'Invalid order total {raw_total!r}', 'order_total')

        return cls(
            order_id=str(payload['id']),
            customer_id=str(customer_id) if customer_id is not None else None,
            order_total=total,
            order_number=str(payload.get('order_number') or payload.get('name') or '') or None,
            email=customer.get('email') or payload.get('email') or payload.get('contact_email') or None,
            first_name=customer.get('first_name'),
            last_name=customer.get('last_name'),
        )


@dataclass(frozen=True)
class Credited:
    customer_id: str
    order_id: str
    points_awarded: int
    welcome_bonus: int
    new_balance: int
    new_tier: str
    previous_tier: Optional[str] = None
    status: str = 'credited'

    @property
    def tier_changed(self) -> bool:
        return self.previous_tier is not None and self.previous_tier != self.new_tier

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'customer_id': self.customer_id,
            'order_id': self.order_id,
            'points_awarded': self.points_awarded,
            'welcome_bonus': self.welcome_bonus,
            'new_balance': self.new_balance,
            'new_tier': self.new_tier,
            'previous_tier': self.previous_tier,
            'tier_changed': self.tier_changed,
        }


@dataclass(frozen=True)
class Skipped:
    reason: str  # guest, duplicate, below_minimum, no_points
    order_id: Optional[str] = None
    customer_id: Optional[str] = None
    status: str = 'skipped'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'reason': self.reason,
            'order_id': self.order_id,
            'customer_id': self.customer_id,
        }


class RedemptionStatus(str, Enum):
    REQUESTED = 'requested'
    VALIDATED = 'validated'
    RESERVED = 'reserved'
    ISSUED = 'issued_externally'
    ROLLED_BACK = 'rolled_back'
    RECORDED = 'recorded'


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    discount_amount: Decimal = Decimal('0')
    current_balance: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'valid': self.valid,
            'reason': self.reason,
            'code': self.code,
            'discount_amount': float(self.discount_amount),
            'current_balance': self.current_balance,
        }


@dataclass(frozen=True)
class RedemptionResult:
    customer_id: str
    points_redeemed: int
    discount: IssuedDiscount
    new_balance: int
    ledger_entry_id: int
    status: RedemptionStatus = RedemptionStatus.RECORDED

    @property
    def discount_code(self) -> str:
        return self.discount.code

    @property
    def discount_amount(self) -> Decimal:
        return self.discount.amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'customer_id': self.customer_id,
            'points_redeemed': self.points_redeemed,
            'discount_code': self.discount.code,
            'discount_amount': float(self.discount.amount),
            'expires_at': self.discount.expires_at.isoformat() if self.discount.expires_at else None,
            'new_balance': self.new_balance,
            'ledger_entry_id': self.ledger_entry_id,
        }


@dataclass
class MaintenanceReport:
    """Outcome of a batch job (expiry sweep, email backfill, ledger check)."""
    processed: int = 0
    changed: int = 0
    points: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'processed': self.processed,
            'changed': self.changed,
            'points': self.points,
            'errors': list(self.errors),
        }


# ==================== Engine ====================

class PointsEngine:
    """
    Points ledger and redemption engine for one shop.

    Usage:
        engine = PointsEngine('example.myshopify.com')
        outcome = engine.credit_order(OrderEvent.from_shopify_payload(payload))
        result = engine.redeem('123', 200)

    Collaborators are injected; the Shopify-backed ones are built lazily from
    app config when not given.
    """

    def __init__(
        self,
        shop_domain: str,
        issuer: DiscountIssuer = None,
        customer_lookup=None,
        locks: CustomerLockRegistry = None,
        config_service: StoreConfigService = None,
    ):
        self.shop_domain = shop_domain
        self.config_service = config_service or StoreConfigService()
        self.ledger = LedgerStore(shop_domain)
        self.projection = BalanceProjection(shop_domain, self.ledger)
        self.locks = locks or customer_locks
        self._issuer = issuer
        self._customer_lookup = customer_lookup

    @property
    def issuer(self) -> DiscountIssuer:
        if self._issuer is None:
            self._issuer = ShopifyDiscountIssuer(ShopifyClient.from_app_config(self.shop_domain))
        return self._issuer

    @property
    def customer_lookup(self):
        if self._customer_lookup is None:
            self._customer_lookup = ShopifyClient.from_app_config(self.shop_domain)
        return self._customer_lookup

    # ==================== Configuration ====================

    def get_settings(self) -> PointsSettings:
        return self.config_service.get_settings(self.shop_domain)

    def get_config(self) -> Dict[str, Any]:
        return self.config_service.get_config(self.shop_domain).to_dict()

    def update_config(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        return self.config_service.update_config(self.shop_domain, partial).to_dict()

    # ==================== Crediting ====================

    def calculate_order_points(self, event: OrderEvent, settings: PointsSettings):
        """
        Points for an order as (points, method).

        Flat mode ignores the order total. Proportional mode floors
        order_total * points_per_dollar and returns (None, method) when the
        order is below minimum_order_amount.
        """
        if settings.use_static_points:
            return settings.points_per_order, 'static'

        total = event.order_total or Decimal('0')
        if total < settings.minimum_order_amount:
            return None, 'proportional'
        points = (total * settings.points_per_dollar).to_integral_value(rounding=ROUND_FLOOR)
        return int(points), 'proportional'

    def credit_order(self, event: OrderEvent):
        """
        Credit an order's points to its customer.

        Returns Credited, or Skipped for guest orders, orders worth no
        points, and redeliveries of an order already credited. Persistence
        failures roll back and propagate; retrying is safe.
        """
        if not event.customer_id:
            current_app.logger.info(f'[Points] Order {event.order_id} has no customer, skipping')
            return Skipped('guest', order_id=event.order_id)

        settings = self.get_settings()
        points, method = self.calculate_order_points(event, settings)
        if points is None:
            current_app.logger.info(
                f'[Points] Order {event.order_id} total {event.order_total} below minimum '
                f'{settings.minimum_order_amount}, skipping'
            )
            return Skipped('below_minimum', order_id=event.order_id, customer_id=event.customer_id)
        if points <= 0:
            return Skipped('no_points', order_id=event.order_id, customer_id=event.customer_id)

        description = f'Order #{event.order_number or event.order_id} - {points} points'
        metadata = {
            'order_number': event.order_number,
            'calculation_method': method,
        }

        # One retry covers a concurrent first-time account insert from another worker
        for attempt in range(2):
            with self.locks.hold(self.shop_domain, event.customer_id):
                try:
                    account, welcome, previous_tier = self.projection.apply_earn(
                        event.customer_id,
                        points,
                        settings.tier_thresholds,
                        welcome_bonus=settings.welcome_bonus,
                        email=event.email,
                        first_name=event.first_name,
                        last_name=event.last_name,
                        order_id=event.order_id,
                        order_total=event.order_total,
                        description=description,
                        metadata=metadata,
                    )
                    db.session.commit()
                except DuplicateEntryError:
                    db.session.rollback()
                    current_app.logger.warning(
                        f'[Points] Order {event.order_id} already credited to customer '
                        f'{event.customer_id}, skipping redelivery'
                    )
                    return Skipped('duplicate', order_id=event.order_id, customer_id=event.customer_id)
                except IntegrityError:
                    db.session.rollback()
                    if attempt == 0:
                        current_app.logger.warning(
                            f'[Points] Concurrent account creation for customer {event.customer_id}, retrying'
                        )
                        continue
                    raise
                except Exception as e:
                    db.session.rollback()
                    current_app.logger.error(f'[Points] Credit failed for order {event.order_id}: {e}')
                    raise

                result = Credited(
                    customer_id=account.customer_id,
                    order_id=event.order_id,
                    points_awarded=points,
                    welcome_bonus=welcome,
                    new_balance=account.current_balance,
                    new_tier=account.tier,
                    previous_tier=previous_tier,
                )

            current_app.logger.info(
                f'[Points] Awarded {points} points to customer {event.customer_id} for order '
                f'{event.order_number or event.order_id} ({method})'
                + (f' plus {welcome} welcome bonus' if welcome else '')
                + f', balance {result.new_balance}, tier {result.new_tier}'
            )
            if result.tier_changed:
                current_app.logger.info(
                    f'[Points] Customer {event.customer_id} moved from {previous_tier} to {result.new_tier}'
                )
            return result

    # ==================== Redemption ====================

    @staticmethod
    def discount_for(points: int, settings: PointsSettings) -> Decimal:
        """Whole currency units; remainders below redemption_rate are worth nothing."""
        return Decimal(points // settings.redemption_rate)

    def validate_redemption(self, customer_id: str, points, settings: PointsSettings = None) -> ValidationResult:
        """Check a redemption request without changing anything."""
        settings = settings or self.get_settings()
        balance = self.projection.get_balance(customer_id).current_balance or 0
        minimum = settings.minimum_redemption

        def invalid(reason, code='INVALID_REDEMPTION_AMOUNT'):
            return ValidationResult(valid=False, reason=reason, code=code, current_balance=balance)

        if isinstance(points, bool) or not isinstance(points, int) or points <= 0:
            return invalid('Points must be a positive whole number')
        if points < minimum:
            return invalid(f'Minimum redemption is {minimum} points')
        if points % minimum:
            return invalid(f'Points must be redeemed in multiples of {minimum}')
        if points > balance:
            return invalid(
                f'Insufficient points. Current: {balance}, Required: {points}',
                code='INSUFFICIENT_BALANCE',
            )

        return ValidationResult(
            valid=True,
            discount_amount=self.discount_for(points, settings),
            current_balance=balance,
        )

    def redeem(
        self,
        customer_id: str,
        points: int,
        order_id: str = None,
        description: str = None,
    ) -> RedemptionResult:
        """
        Exchange points for a discount code.

        The debit is reserved and committed before the issuer is called, so a
        concurrent redemption sees the reduced balance. The issuer runs outside
        the lock. If it fails or times out the reservation is released and
        IssuanceFailedError is raised; no ledger entry is written. The same
        happens when the redeemed entry still cannot be written after a retry;
        the orphaned code is logged at error level for manual deactivation.

        Raises:
            InvalidRedemptionAmountError: points not a positive multiple of the minimum
            InsufficientBalanceError: balance too low (checked again under the lock)
            IssuanceFailedError: issuer failed; balance restored
        """
        customer_id = str(customer_id)
        settings = self.get_settings()

        check = self.validate_redemption(customer_id, points, settings)
        if not check.valid:
            current_app.logger.info(f'[Points] Redemption rejected for customer {customer_id}: {check.reason}')
            if check.code == 'INSUFFICIENT_BALANCE':
                raise InsufficientBalanceError(check.current_balance, points)
            raise InvalidRedemptionAmountError(check.reason)

        discount_amount = self.discount_for(points, settings)

        with self.locks.hold(self.shop_domain, customer_id):
            try:
                account = self.projection.apply_debit(customer_id, points)
                db.session.commit()
            except InsufficientBalanceError as e:
                db.session.rollback()
                current_app.logger.info(f'[Points] Redemption rejected for customer {customer_id}: {e.message}')
                raise
            except Exception as e:
                db.session.rollback()
                current_app.logger.error(f'[Points] Reservation failed for customer {customer_id}: {e}')
                raise
            reserved_balance = account.current_balance

        current_app.logger.info(
            f'[Points] Reserved {points} points for customer {customer_id}, balance {reserved_balance}'
        )

        try:
            issued = self.issuer.issue(customer_id, points, discount_amount)
        except Exception as e:
            reason = getattr(e, 'message', None) or str(e) or type(e).__name__
            self._release_reservation(customer_id, points, reason)
            raise IssuanceFailedError(customer_id, points, reason) from e

        error = None
        for attempt in range(RECORD_ATTEMPTS):
            try:
                entry_id, new_balance = self._record_redemption(customer_id, points, issued, order_id, description)
                break
            except Exception as e:
                error = e
                current_app.logger.warning(
                    f'[Points] Recording redemption of {issued.code} for customer {customer_id} '
                    f'failed (attempt {attempt + 1}): {e}'
                )
        else:
            current_app.logger.error(
                f'[Points] Discount {issued.code} ({issued.discount_id}) issued to customer {customer_id} '
                f'could not be recorded and must be deactivated by hand: {error}'
            )
            reason = f'redemption could not be recorded: {error}'
            self._release_reservation(customer_id, points, reason)
            raise IssuanceFailedError(customer_id, points, reason) from error

        current_app.logger.info(
            f'[Points] Customer {customer_id} redeemed {points} points for {issued.code} '
            f'({issued.amount} off), balance {new_balance}'
        )
        return RedemptionResult(
            customer_id=customer_id,
            points_redeemed=points,
            discount=issued,
            new_balance=new_balance,
            ledger_entry_id=entry_id,
        )

    def _record_redemption(self, customer_id, points, issued, order_id, description):
        """Append the redeemed entry for an issued discount; returns (entry id, balance)."""
        with self.locks.hold(self.shop_domain, customer_id):
            try:
                entry_id = self.ledger.append(LedgerEntry(
                    customer_id=customer_id,
                    kind=LedgerEntryKind.REDEEMED.value,
                    points=points,
                    order_id=str(order_id) if order_id is not None else None,
                    description=description or f'Redeemed {points} points for {issued.code}',
                    entry_metadata={
                        'discount_code': issued.code,
                        'discount_amount': str(issued.amount),
                        'discount_id': issued.discount_id,
                        'expires_at': issued.expires_at.isoformat() if issued.expires_at else None,
                    },
                ))
                account = self.projection.get_account(customer_id)
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            return entry_id, account.current_balance

    def _release_reservation(self, customer_id: str, points: int, reason: str) -> None:
        with self.locks.hold(self.shop_domain, customer_id):
            try:
                account = self.projection.release_debit(customer_id, points)
                db.session.commit()
            except Exception as e:
                db.session.rollback()
                current_app.logger.error(
                    f'[Points] Could not release {points} reserved points for customer {customer_id}: {e}'
                )
                raise
        current_app.logger.warning(
            f'[Points] Discount issuance failed for customer {customer_id} ({reason}); '
            f'released {points} points, balance {account.current_balance}'
        )

    def redemption_options(self, customer_id: str) -> Dict[str, Any]:
        """Point blocks a customer can redeem right now, for checkout display."""
        settings = self.get_settings()
        account = self.projection.get_balance(customer_id)
        balance = account.current_balance or 0
        step = settings.minimum_redemption

        options = []
        points = step
        while points <= balance and len(options) < settings.max_options:
            options.append({
                'points': points,
                'discount_amount': float(self.discount_for(points, settings)),
            })
            points += step

        return {
            'customer_id': str(customer_id),
            'balance': balance,
            'tier': account.tier,
            'can_redeem': bool(options),
            'minimum_redemption': step,
            'redemption_rate': settings.redemption_rate,
            'max_discount': float(self.discount_for((balance // step) * step, settings)),
            'options': options,
        }

    # ==================== Adjustment ====================

    def adjust(
        self,
        customer_id: str,
        signed_points: int,
        description: str = None,
        admin_note: str = None,
    ) -> CustomerAccount:
        """
        Add or remove points by hand.

        Creates the account without a welcome bonus when needed. A removal
        larger than the balance raises InsufficientBalanceError.
        """
        if isinstance(signed_points, bool) or not isinstance(signed_points, int):
            raise ValidationError('Adjustment must be a whole number of points', 'points')
        if signed_points == 0:
            raise ValidationError('Adjustment cannot be zero', 'points')

        customer_id = str(customer_id)
        settings = self.get_settings()
        description = description or f'Manual adjustment: {signed_points:+d} points'

        with self.locks.hold(self.shop_domain, customer_id):
            try:
                account, previous_tier = self.projection.apply_adjustment(
                    customer_id,
                    signed_points,
                    settings.tier_thresholds,
                    description=description,
                    metadata={'admin_note': admin_note} if admin_note else {},
                )
                db.session.commit()
            except InsufficientBalanceError as e:
                db.session.rollback()
                current_app.logger.info(f'[Points] Adjustment rejected for customer {customer_id}: {e.message}')
                raise
            except Exception as e:
                db.session.rollback()
                current_app.logger.error(f'[Points] Adjustment failed for customer {customer_id}: {e}')
                raise

        current_app.logger.info(
            f'[Points] Adjusted customer {customer_id} by {signed_points:+d} points, '
            f'balance {account.current_balance}, tier {account.tier}'
        )
        return account

    # ==================== Queries ====================

    def get_balance(self, customer_id: str) -> CustomerAccount:
        return self.projection.get_balance(customer_id)

    def get_balance_summary(self, customer_id: str) -> Dict[str, Any]:
        """Balance plus tier progress."""
        account = self.projection.get_balance(customer_id)
        upcoming, needed = next_tier(account.total_earned, self.get_settings().tier_thresholds)
        return {
            **account.to_dict(),
            'next_tier': upcoming,
            'points_to_next_tier': needed,
        }

    def get_transactions(self, customer_id: str, limit: int = 20, offset: int = 0) -> List[LedgerEntry]:
        return self.ledger.list_by_customer(customer_id, limit=limit, offset=offset)

    def find_customer_by_email(self, email: str) -> Optional[CustomerAccount]:
        return self.projection.find_by_email(email)

    def leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [
            {
                'rank': rank,
                'customer_id': account.customer_id,
                'name': account.display_name,
                'email': account.email,
                'current_balance': account.current_balance,
                'total_earned': account.total_earned,
                'tier': account.tier,
            }
            for rank, account in enumerate(self.projection.leaderboard(limit), start=1)
        ]

    def analytics(self) -> Dict[str, Any]:
        return self.ledger.aggregate()

    # ==================== Maintenance ====================

    def expire_inactive_balances(self, now: datetime = None) -> MaintenanceReport:
        """
        Expire the balances of customers with no earn activity within
        points_expiry_days. One unit of work per customer; a failure for one
        customer is logged and the sweep continues.
        """
        report = MaintenanceReport()
        settings = self.get_settings()
        if not settings.points_expiry_days:
            return report

        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=settings.points_expiry_days)

        for customer_id in self.projection.inactive_customer_ids(cutoff):
            report.processed += 1
            with self.locks.hold(self.shop_domain, customer_id):
                try:
                    expired = self.projection.apply_expiry(
                        customer_id,
                        inactive_since=cutoff,
                        description=f'Points expired after {settings.points_expiry_days} days without activity',
                        metadata={'inactive_since': cutoff.isoformat()},
                    )
                    db.session.commit()
                except Exception as e:
                    db.session.rollback()
                    current_app.logger.error(f'[Points] Expiry failed for customer {customer_id}: {e}')
                    report.errors.append(f'{customer_id}: {e}')
                    continue

            if expired:
                report.changed += 1
                report.points += expired
                current_app.logger.info(f'[Points] Expired {expired} points for customer {customer_id}')

        return report

    def backfill_placeholder_emails(self, limit: int = None) -> MaintenanceReport:
        """Replace placeholder emails with real ones from the customer lookup."""
        report = MaintenanceReport()

        for account in self.projection.placeholder_accounts(limit):
            report.processed += 1
            customer_id = account.customer_id
            customer = self.customer_lookup.get_customer_by_id(customer_id)
            if not customer or not customer.get('email'):
                report.errors.append(f'{customer_id}: no email on file')
                continue

            with self.locks.hold(self.shop_domain, customer_id):
                try:
                    locked = self.projection.lock_account(customer_id)
                    changed = locked is not None and self.projection.reconcile_contact(
                        locked,
                        email=customer.get('email'),
                        first_name=customer.get('firstName'),
                        last_name=customer.get('lastName'),
                    )
                    db.session.commit()
                except Exception as e:
                    db.session.rollback()
                    current_app.logger.error(f'[Points] Email backfill failed for customer {customer_id}: {e}')
                    report.errors.append(f'{customer_id}: {e}')
                    continue

            if changed:
                report.changed += 1

        return report

    def verify_ledger(self, customer_id: str) -> Dict[str, Any]:
        """
        Compare a customer's stored balances with a replay of their ledger.

        Raises:
            CustomerNotFoundError: no account and no ledger entries
        """
        account = self.projection.get_balance(customer_id)
        replayed = self.ledger.replay(customer_id)
        if not account.exists and not replayed['entry_count']:
            raise CustomerNotFoundError(customer_id)
        stored = {
            'current_balance': account.current_balance or 0,
            'total_earned': account.total_earned or 0,
            'total_redeemed': account.total_redeemed or 0,
            'total_expired': account.total_expired or 0,
        }
        drift = {
            key: replayed[key] - stored[key]
            for key in stored
            if replayed[key] != stored[key]
        }
        return {
            'customer_id': str(customer_id),
            'stored': stored,
            'replayed': {key: replayed[key] for key in stored},
            'entry_count': replayed['entry_count'],
            'consistent': not drift,
            'drift': drift,
        }

    def verify_all(self) -> List[Dict[str, Any]]:
        """verify_ledger for every customer of the shop; only inconsistent ones are returned."""
        results = []
        for customer_id in self.projection.customer_ids():
            result = self.verify_ledger(customer_id)
            if not result['consistent']:
                current_app.logger.warning(f"[Points] Ledger drift for customer {customer_id}: {result['drift']}")
                results.append(result)
        return results
