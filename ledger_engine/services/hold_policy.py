"""
Commission hold periods.

This is the only place that turns a hold period into an unlock date.
"""

from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from ledger_engine.core.clock import business_date
from ledger_engine.core.config import Settings, settings as default_settings
from ledger_engine.core.exceptions import ValidationError
from ledger_engine.models import CommissionType


class CommissionHoldPolicy:
    """Maps a commission type to the number of days it stays pending."""

    def __init__(self, direct_days: int, non_direct_days: int, tz: ZoneInfo):
        self.direct_days = direct_days
        self.non_direct_days = non_direct_days
        self.tz = tz

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "CommissionHoldPolicy":
        config = config or default_settings
        return cls(config.direct_hold_days, config.team_hold_days, config.tzinfo)

    def hold_days(self, commission_type: str) -> int:
        try:
            kind = CommissionType(commission_type)
        except ValueError as e:
            raise ValidationError(
                f"Unknown commission type: {commission_type}",
                {"commission_type": commission_type}
            ) from e
        if kind is CommissionType.DIRECT:
            return self.direct_days
        return self.non_direct_days

    def unlock_date_for(self, commission_type: str, created_at: datetime) -> date:
        """Created day in the reference timezone plus the hold period."""
        return business_date(created_at, self.tz) + timedelta(days=self.hold_days(commission_type))
