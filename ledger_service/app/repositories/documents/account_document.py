from __future__ import annotations

from common.mongo.types import BaseDocument, build_document_data_from_domain

from ...models.account import Account


class AccountDocument(BaseDocument):
    """MongoDB accounts 컬렉션 도큐먼트 모델.

    저장 문서에는 applied_ops(보존 기간 안에 적용된 op_id 와 적용 시각)가 함께 있지만
    도메인으로는 노출하지 않는다.
    """

    account_id: str
    points_balance: int = 0
    currency_balance: int = 0

    @classmethod
    def from_domain(cls, account: Account) -> "AccountDocument":
        return cls.model_validate(build_document_data_from_domain(account))

    def to_domain(self) -> Account:
        return Account(
            account_id=self.account_id,
            points_balance=self.points_balance,
            currency_balance=self.currency_balance,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
