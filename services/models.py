from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FetchResult:
    ticker: str
    ex_date: str
    pay_date: str
    dividend_amount: str
    yield_value: str
    fetched_at: datetime = field(default_factory=_utcnow)

    def age_seconds(self, now: datetime | None = None) -> int:
        now = now or _utcnow()
        return max(0, int((now - self.fetched_at).total_seconds()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ticker': self.ticker,
            'exDate': self.ex_date,
            'payDate': self.pay_date,
            'dividendAmount': self.dividend_amount,
            'yieldValue': self.yield_value,
            'fetchedAt': self.fetched_at.isoformat(),
        }
