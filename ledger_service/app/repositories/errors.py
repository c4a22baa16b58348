from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from pymongo.errors import DuplicateKeyError, PyMongoError

from ..exceptions import StoreUnavailableError


logger = logging.getLogger(__name__)


@contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    """pymongo 예외를 StoreUnavailableError 로 바꾼다.

    DuplicateKeyError 는 유니크 제약 위반이라는 비즈니스 신호이므로 그대로 올린다.
    """

    try:
        yield
    except DuplicateKeyError:
        raise
    except PyMongoError as exc:
        logger.warning("store error during %s: %s", operation, exc)
        raise StoreUnavailableError(f"store unavailable during {operation}") from exc
