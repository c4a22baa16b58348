from __future__ import annotations

from pydantic import BaseModel


class ReconciliationReport(BaseModel):
    """계정 잔액과 원장 합계 비교 결과."""

    account_id: str
    points_balance: int
    points_logged: int
    currency_balance: int
    currency_logged: int

    @property
    def points_drift(self) -> int:
        return self.points_balance - self.points_logged

    @property
    def currency_drift(self) -> int:
        return self.currency_balance - self.currency_logged

    @property
    def consistent(self) -> bool:
        return self.points_drift == 0 and self.currency_drift == 0
