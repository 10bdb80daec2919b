"""
Best-effort user notifications.

Delivery is owned by an external collaborator. The engine only depends on
the Notifier capability and never lets a notification failure roll back or
fail a ledger operation.
"""

from decimal import Decimal
from typing import Protocol

import structlog


logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    async def benefit_credited(
        self, user_id: str, position_id: int, amount: Decimal, currency: str, cycle: int, day: int
    ) -> None: ...

    async def commission_unlocked(
        self, user_id: str, commission_id: int, amount: Decimal, currency: str
    ) -> None: ...


class NullNotifier:
    """Notifier that does nothing."""

    async def benefit_credited(self, user_id, position_id, amount, currency, cycle, day) -> None:
        return None

    async def commission_unlocked(self, user_id, commission_id, amount, currency) -> None:
        return None


class LoggingNotifier:
    """Notifier that only records events in the structured log."""

    def __init__(self):
        self.logger = logger.bind(service="logging_notifier")

    async def benefit_credited(self, user_id, position_id, amount, currency, cycle, day) -> None:
        self.logger.info(
            "Benefit credited",
            user_id=user_id,
            position_id=position_id,
            amount=str(amount),
            currency=currency,
            cycle=cycle,
            day=day
        )

    async def commission_unlocked(self, user_id, commission_id, amount, currency) -> None:
        self.logger.info(
            "Commission unlocked",
            user_id=user_id,
            commission_id=commission_id,
            amount=str(amount),
            currency=currency
        )


async def notify_safely(notifier: Notifier, event: str, **payload) -> bool:
    """
    Call notifier.<event>(**payload), logging and swallowing any failure.

    Returns True when the notifier accepted the event.
    """
    try:
        await getattr(notifier, event)(**payload)
        return True
    except Exception as e:
        logger.warning(
            "Notification failed",
            notification_event=event,
            user_id=payload.get("user_id"),
            error=str(e)
        )
        return False
