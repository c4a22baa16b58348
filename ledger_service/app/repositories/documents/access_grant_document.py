from __future__ import annotations

from common.mongo.types import BaseDocument, MongoDateTime

from ...models.access_grant import AccessGrant


class AccessGrantDocument(BaseDocument):
    """MongoDB access_grants 컬렉션 도큐먼트 모델."""

    account_id: str
    expires_at: MongoDateTime

    def to_domain(self) -> AccessGrant:
        return AccessGrant(
            account_id=self.account_id,
            expires_at=self.expires_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
