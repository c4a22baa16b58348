from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml


logger = logging.getLogger(__name__)


DEFAULT_CONFIG_FILE_NAME = "config.yaml"


@dataclass(slots=True)
class AccessConfig:
    price_minor: int = 200
    duration_hours: int = 24
    grant_retention_hours: int = 168


@dataclass(slots=True)
class CompensationConfig:
    # 프로세스 내 재시도 간격(초). 모두 실패하면 운영자 큐로 에스컬레이션한다.
    retry_delays: list[float] = field(default_factory=lambda: [0.05, 0.2, 1.0])


@dataclass(slots=True)
class ReconciliationConfig:
    interval_seconds: float = 600.0
    stale_saga_seconds: float = 600.0
    batch_size: int = 200


@dataclass(slots=True)
class IdempotencyConfig:
    # 계정/경품/이용권 문서에 적용된 operation_id 를 남겨두는 시간.
    # 사가 복구와 보상 재시도는 이 시간 안에 끝나야 한다.
    applied_ops_retention_hours: int = 168


@dataclass(slots=True)
class DepositConfig:
    min_amount_minor: int = 500
    payment_methods: list[str] = field(
        default_factory=lambda: ["easypaisa", "jazzcash", "bank"]
    )


@dataclass(slots=True)
class LedgerConfig:
    """ledger-service 전체 설정 루트."""

    access: AccessConfig = field(default_factory=AccessConfig)
    compensation: CompensationConfig = field(default_factory=CompensationConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    deposits: DepositConfig = field(default_factory=DepositConfig)
    idempotency: IdempotencyConfig = field(default_factory=IdempotencyConfig)


def _find_config_path() -> Path | None:
    """현재 작업 디렉토리 기준으로 상위로 올라가며 config.yaml 을 찾는다."""

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / DEFAULT_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def _as_int(section: dict[str, Any], key: str, default: int, path: Path) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:  # noqa: TRY003
        raise RuntimeError(f"invalid {key} in {path}: {raw!r}") from exc
    if value < 0:
        raise RuntimeError(f"{key} must not be negative in {path}: {raw!r}")
    return value


def _as_float(section: dict[str, Any], key: str, default: float, path: Path) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:  # noqa: TRY003
        raise RuntimeError(f"invalid {key} in {path}: {raw!r}") from exc
    if value < 0:
        raise RuntimeError(f"{key} must not be negative in {path}: {raw!r}")
    return value


def parse_config(data: dict[str, Any], path: Path) -> LedgerConfig:
    """YAML 에서 읽은 dict 를 LedgerConfig 로 변환한다."""

    defaults = LedgerConfig()

    access_raw = data.get("access") or {}
    access = AccessConfig(
        price_minor=_as_int(access_raw, "price_minor", defaults.access.price_minor, path),
        duration_hours=_as_int(
            access_raw, "duration_hours", defaults.access.duration_hours, path
        ),
        grant_retention_hours=_as_int(
            access_raw,
            "grant_retention_hours",
            defaults.access.grant_retention_hours,
            path,
        ),
    )
    if access.price_minor == 0 or access.duration_hours == 0:
        raise RuntimeError(f"access.price_minor/duration_hours must be positive in {path}")

    compensation_raw = data.get("compensation") or {}
    delays_raw = compensation_raw.get("retry_delays")
    if delays_raw is None:
        retry_delays = list(defaults.compensation.retry_delays)
    else:
        try:
            retry_delays = [float(item) for item in delays_raw]
        except (TypeError, ValueError) as exc:  # noqa: TRY003
            raise RuntimeError(
                f"invalid compensation.retry_delays in {path}: {delays_raw!r}"
            ) from exc

    reconciliation_raw = data.get("reconciliation") or {}
    reconciliation = ReconciliationConfig(
        interval_seconds=_as_float(
            reconciliation_raw,
            "interval_seconds",
            defaults.reconciliation.interval_seconds,
            path,
        ),
        stale_saga_seconds=_as_float(
            reconciliation_raw,
            "stale_saga_seconds",
            defaults.reconciliation.stale_saga_seconds,
            path,
        ),
        batch_size=_as_int(
            reconciliation_raw, "batch_size", defaults.reconciliation.batch_size, path
        ),
    )

    deposits_raw = data.get("deposits") or {}
    methods_raw = deposits_raw.get("payment_methods") or defaults.deposits.payment_methods
    deposits = DepositConfig(
        min_amount_minor=_as_int(
            deposits_raw, "min_amount_minor", defaults.deposits.min_amount_minor, path
        ),
        payment_methods=[str(m).strip().lower() for m in methods_raw if str(m).strip()],
    )

    idempotency_raw = data.get("idempotency") or {}
    idempotency = IdempotencyConfig(
        applied_ops_retention_hours=_as_int(
            idempotency_raw,
            "applied_ops_retention_hours",
            defaults.idempotency.applied_ops_retention_hours,
            path,
        ),
    )
    if idempotency.applied_ops_retention_hours * 3600 <= reconciliation.stale_saga_seconds:
        raise RuntimeError(
            f"idempotency.applied_ops_retention_hours must exceed "
            f"reconciliation.stale_saga_seconds in {path}"
        )

    return LedgerConfig(
        access=access,
        compensation=CompensationConfig(retry_delays=retry_delays),
        reconciliation=reconciliation,
        deposits=deposits,
        idempotency=idempotency,
    )


@lru_cache(maxsize=1)
def load_config() -> LedgerConfig:
    """ledger-service 설정을 로드한다. config.yaml 이 없으면 기본값을 사용한다."""

    path = _find_config_path()
    if path is None:
        logger.info("%s not found, using default ledger config", DEFAULT_CONFIG_FILE_NAME)
        return LedgerConfig()

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    ledger_section = data.get("ledger") or {}
    return parse_config(ledger_section, path)
