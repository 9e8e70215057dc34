from dataclasses import dataclass
from typing import Optional

from schemas import DashboardSummary


@dataclass(frozen=True)
class ProviderResult:
    """Tagged outcome of one summary provider: ``ok`` with a summary or ``unavailable``."""

    status: str
    summary: Optional[DashboardSummary] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, summary: DashboardSummary) -> "ProviderResult":
        return cls(status="ok", summary=summary)

    @classmethod
    def unavailable(cls, reason: str) -> "ProviderResult":
        return cls(status="unavailable", reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.status == "ok" and self.summary is not None


class SummaryProvider:
    name = "base"

    def fetch(self, user_id: str, *, locale: Optional[str] = None) -> ProviderResult:
        raise NotImplementedError
