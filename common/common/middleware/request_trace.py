import json
import logging
import time
import uuid
from urllib.parse import parse_qs

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response


REQUEST_ID_HEADER = "X-Request-Id"
SPAN_ID_HEADER = "X-Span-Id"

# 노이즈를 줄이기 위해 로그에서 제외할 엔드포인트 경로 목록
IGNORED_LOG_PATHS: set[str] = {"/health"}

# 배송 정보 등 개인정보는 로그 바디에서 가린다.
REDACTED_BODY_FIELDS: set[str] = {"full_name", "whatsapp_number", "address"}

MAX_BODY_LOG_LENGTH = 1024


class RequestTraceMiddleware(BaseHTTPMiddleware):
    """공통 Request/Span ID 로그 미들웨어.

    - 들어오는 요청에서 X-Request-Id, X-Span-Id 를 읽고, 없으면 request_id만 새로 생성한다.
    - request.state 에 request_id, span_id 를 저장한다.
    - 응답 헤더에 동일한 값을 설정한다.
    - 최소한의 완료/실패 로그를 남긴다.
    """

    def __init__(self, app, logger: logging.Logger | None = None) -> None:  # type: ignore[override]
        super().__init__(app)
        self._logger = logger or logging.getLogger("request_trace")

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id, span_id = self._extract_trace_ids(request)

        request.state.request_id = request_id
        request.state.span_id = span_id

        raw_body: str | None = None
        if request.method in {"POST", "PUT", "PATCH", "DELETE"}:
            try:
                body_bytes = await request.body()
            except Exception:  # noqa: BLE001
                body_bytes = b""
            if body_bytes:
                raw_body = _redact_body(body_bytes.decode("utf-8", errors="replace"))

        request.state.request_body = raw_body

        should_log = request.url.path not in IGNORED_LOG_PATHS
        start = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            if should_log:
                self._logger.exception(
                    "request failed",
                    extra=self._build_log_extra(
                        request,
                        request_id,
                        span_id,
                        duration=time.monotonic() - start,
                    ),
                )
            raise

        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        response.headers.setdefault(SPAN_ID_HEADER, span_id)

        if should_log:
            self._logger.info(
                "completed request",
                extra=self._build_log_extra(
                    request,
                    request_id,
                    span_id,
                    status=response.status_code,
                    duration=time.monotonic() - start,
                ),
            )

        return response

    def _extract_trace_ids(self, request: Request) -> tuple[str, str]:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        span_id = request.headers.get(SPAN_ID_HEADER) or "0"
        return request_id, span_id

    def _build_log_extra(
        self,
        request: Request,
        request_id: str,
        span_id: str,
        status: int | None = None,
        duration: float | None = None,
    ) -> dict[str, object]:
        extra: dict[str, object] = {
            "request_id": request_id,
            "span_id": span_id,
            "method": request.method,
            "path": request.url.path,
        }

        query = request.url.query
        if query:
            parsed = parse_qs(query, keep_blank_values=True)
            if parsed:
                extra["query_params"] = {
                    key: values[0] if len(values) == 1 else values
                    for key, values in parsed.items()
                }

        body = getattr(request.state, "request_body", None)
        if body:
            extra["body"] = body

        if status is not None:
            extra["status"] = status

        if duration is not None:
            extra["duration"] = f"{duration * 1000:.3f}ms"

        return extra


def _redact_body(text: str) -> str:
    """JSON 바디라면 개인정보 필드를 가리고, 길이를 잘라서 반환한다."""

    try:
        data = json.loads(text)
    except ValueError:
        data = None

    if isinstance(data, dict):
        masked = _mask(data)
        text = json.dumps(masked, ensure_ascii=False)

    if len(text) > MAX_BODY_LOG_LENGTH:
        text = text[:MAX_BODY_LOG_LENGTH]
    return text


def _mask(data: dict) -> dict:
    result: dict = {}
    for key, value in data.items():
        if key in REDACTED_BODY_FIELDS:
            result[key] = "***"
        elif isinstance(value, dict):
            result[key] = _mask(value)
        else:
            result[key] = value
    return result
