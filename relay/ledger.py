import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, List, Optional

from sqlalchemy import and_, case, func
from sqlalchemy.orm import Session, sessionmaker

from relay.config import FREE_CHECKS_ON_SIGNUP
from relay.models import Transaction, User

logger = logging.getLogger("docrelay")


class AccessReason(str, Enum):
    SUBSCRIPTION = "subscription"
    FREE_CREDITS = "free_credits"
    NONE = "none"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: AccessReason


class QuotaLedger:
    """
    Per-user usage credits and subscriptions.

    Every mutation is a single UPDATE on the user's row, so two updates for
    the same user never interleave inside one read-modify-write.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        free_credits_on_signup: int = FREE_CHECKS_ON_SIGNUP,
        clock: Callable[[], float] = time.time,
    ):
        self.session_factory = session_factory
        self.free_credits_on_signup = free_credits_on_signup
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def _subscription_active(self, now: int):
        return and_(User.subscription_type != "free", User.subscription_expires > now)

    def _update(self, user_id: int, values: dict, *criteria) -> int:
        session: Session = self.session_factory()
        try:
            updated = (
                session.query(User)
                .filter(User.user_id == user_id, *criteria)
                .update(values, synchronize_session=False)
            )
            session.commit()
            return updated
        finally:
            session.close()

    def get_or_create(
        self,
        user_id: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> User:
        session: Session = self.session_factory()
        try:
            user = session.get(User, user_id)
            if user is None:
                user = User(
                    user_id=user_id,
                    username=username,
                    first_name=first_name,
                    last_name=last_name,
                    checks_remaining=self.free_credits_on_signup,
                    total_checks=0,
                )
                session.add(user)
                session.commit()
                session.refresh(user)
                logger.info("Created user %s with %d free checks", user_id, self.free_credits_on_signup)
            session.expunge(user)
            return user
        finally:
            session.close()

    def touch(self, user_id: int) -> None:
        self._update(user_id, {User.last_active: func.now()})

    def check_access(self, user_id: int) -> AccessDecision:
        session: Session = self.session_factory()
        try:
            user = session.get(User, user_id)
        finally:
            session.close()

        if user is None:
            return AccessDecision(False, AccessReason.NONE)
        if user.subscription_type != "free" and (user.subscription_expires or 0) > self._now():
            return AccessDecision(True, AccessReason.SUBSCRIPTION)
        if user.checks_remaining > 0:
            return AccessDecision(True, AccessReason.FREE_CREDITS)
        return AccessDecision(False, AccessReason.NONE)

    def reserve_one(self, user_id: int) -> bool:
        """Take one free credit ahead of processing. False if none is left."""
        updated = self._update(
            user_id,
            {User.checks_remaining: User.checks_remaining - 1},
            User.checks_remaining > 0,
        )
        return updated == 1

    def debit_one(self, user_id: int, reserved: bool = False) -> None:
        """
        Charge one successful check: lifetime usage goes up by one and one
        free credit is consumed. A credit already taken by reserve_one is not
        taken twice, and an active subscription is never charged a credit.
        """
        if reserved:
            remaining = User.checks_remaining
        else:
            remaining = case(
                (self._subscription_active(self._now()), User.checks_remaining),
                (User.checks_remaining > 0, User.checks_remaining - 1),
                else_=User.checks_remaining,
            )
        self._update(user_id, {
            User.checks_remaining: remaining,
            User.total_checks: User.total_checks + 1,
        })

    def credit_free(self, user_id: int, n: int) -> None:
        if n <= 0:
            raise ValueError(f"credit must be positive, got {n}")
        self._update(user_id, {User.checks_remaining: User.checks_remaining + n})

    def add_subscription(self, user_id: int, tier: str, days: int) -> int:
        """Start (or restart) a subscription for ``days`` days; returns the expiry."""
        if tier == "free":
            raise ValueError("'free' is not a subscription tier")
        expires = self._now() + days * 24 * 60 * 60
        self._update(user_id, {
            User.subscription_type: tier,
            User.subscription_expires: expires,
        })
        return expires

    def record_purchase(
        self,
        user_id: int,
        checks: int,
        amount: Decimal,
        currency: str,
        payment_method: str,
    ) -> int:
        """Credit purchased checks and keep the payment as a transaction row."""
        self.credit_free(user_id, checks)
        session: Session = self.session_factory()
        try:
            txn = Transaction(
                user_id=user_id,
                amount=amount,
                currency=currency,
                package=f"{checks}_checks",
                payment_method=payment_method,
                status="paid",
            )
            session.add(txn)
            session.commit()
            logger.info("User %s bought %d checks (%s %s via %s)", user_id, checks, amount, currency, payment_method)
            return txn.id
        finally:
            session.close()

    def profile(self, user_id: int) -> Optional[dict]:
        session: Session = self.session_factory()
        try:
            user = session.get(User, user_id)
            if user is None:
                return None
            now = self._now()
            active = user.subscription_type != "free" and (user.subscription_expires or 0) > now
            return {
                "user_id": user.user_id,
                "username": user.username,
                "subscription_type": user.subscription_type,
                "subscription_active": active,
                "subscription_expires": user.subscription_expires,
                "days_left": -(-(user.subscription_expires - now) // 86400) if active else 0,
                "checks_remaining": user.checks_remaining,
                "total_checks": user.total_checks,
                "created_at": user.created_at,
            }
        finally:
            session.close()

    def stats(self) -> dict:
        session: Session = self.session_factory()
        try:
            now = self._now()
            total = session.query(func.count(User.user_id)).scalar()
            active = (
                session.query(func.count(User.user_id))
                .filter(self._subscription_active(now))
                .scalar()
            )
            since = datetime.fromtimestamp(now - 86400, tz=timezone.utc)
            today = session.query(func.count(User.user_id)).filter(User.created_at >= since).scalar()
            total_checks = session.query(func.coalesce(func.sum(User.total_checks), 0)).scalar()
            return {
                "total": total,
                "active_subscriptions": active,
                "today": today,
                "total_checks": total_checks,
            }
        finally:
            session.close()

    def transactions(self, user_id: Optional[int] = None, limit: int = 100) -> List[dict]:
        """Newest first; all users unless ``user_id`` is given."""
        session: Session = self.session_factory()
        try:
            query = session.query(Transaction)
            if user_id is not None:
                query = query.filter(Transaction.user_id == user_id)
            rows = query.order_by(Transaction.id.desc()).limit(limit).all()
            return [
                {
                    "id": txn.id,
                    "user_id": txn.user_id,
                    "amount": str(txn.amount),
                    "currency": txn.currency,
                    "package": txn.package,
                    "payment_method": txn.payment_method,
                    "status": txn.status,
                    "created_at": txn.created_at,
                }
                for txn in rows
            ]
        finally:
            session.close()
