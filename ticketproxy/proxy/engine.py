from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qs

import httpx

from ..config import ProxySettings
from ..errors import ApiError, InternalProxyError, RetriesExhausted
from .headers import HeaderMap, filter_request_headers, filter_response_headers, redact
from .retry import Fail, Ok, Outcome, Retry, RetryState, decide

logger = logging.getLogger("ticketproxy.proxy")

STREAM_THRESHOLD_BYTES = 1024 * 1024
CHUNK_SIZE = 8192
REQUEST_BODY_LOG_LIMIT = 10 * 1024
ERROR_BODY_LOG_LIMIT = 5 * 1024
ERROR_FIELDS = ("error", "message", "code", "status", "type")
NO_BODY_METHODS = ("GET", "HEAD", "OPTIONS")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class ProxyRequest:
    method: str
    path: str
    params: str = ""
    query: str = ""
    headers: HeaderMap = field(default_factory=HeaderMap)
    body: bytes = b""

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "") or ""


@dataclass
class UpstreamResponse:
    status_code: int
    headers: HeaderMap
    body: Optional[bytes] = None
    chunks: Optional[AsyncIterator[bytes]] = None

    @property
    def streamed(self) -> bool:
        return self.chunks is not None

    async def read(self) -> bytes:
        if self.chunks is None:
            return self.body or b""
        parts = [chunk async for chunk in self.chunks]
        self.chunks = None
        self.body = b"".join(parts)
        return self.body


def _safe_json(value: Any) -> str:
    try:
        return json.dumps(value, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return repr(value)


def _preview(content: bytes, content_type: str) -> Any:
    text = content.decode("utf-8", errors="replace")
    if "application/json" in (content_type or "").lower():
        try:
            return json.loads(text) or text
        except ValueError:
            return text
    return text


def parse_error_body(content: bytes) -> Optional[Dict[str, Any]]:
    """Pull the usual error fields out of an upstream error body."""
    if not content:
        return None
    text = content.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except ValueError:
        return {"raw": text}
    if not isinstance(data, dict):
        return {"raw": data}
    picked = {k: data[k] for k in ERROR_FIELDS if k in data}
    return picked or data


class ProxyEngine:
    """
    Forwards one inbound request to the configured upstream and relays the
    response, retrying transient failures with bounded exponential backoff.
    """

    def __init__(
        self,
        settings: ProxySettings,
        client: httpx.AsyncClient,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self._sleep = sleep or asyncio.sleep

    @property
    def timeout_s(self) -> float:
        return self.settings.timeout_ms / 1000

    # -------------------------
    # Request shaping
    # -------------------------
    def build_target_url(self, request: ProxyRequest) -> str:
        base = self.settings.base_url.rstrip("/")
        path = request.path or "/"
        if request.params:
            path = path.rstrip("/") + "/" + request.params.lstrip("/")
        path = "/" + path.lstrip("/")

        url = base + path
        if request.query:
            url += "?" + request.query
        return url

    def build_headers(self, request: ProxyRequest) -> HeaderMap:
        defaults = HeaderMap({
            "X-Api-Key": self.settings.api_key,
            "Accept": "application/json",
            "Content-Type": "application/json",
        })
        return filter_request_headers(request.headers).merged_over(defaults)

    def build_request_options(self, request: ProxyRequest) -> Dict[str, Any]:
        headers = self.build_headers(request)
        options: Dict[str, Any] = {
            "headers": list(headers.items()),
            "timeout": httpx.Timeout(
                self.timeout_s,
                connect=min(self.settings.connect_timeout_s, self.timeout_s),
            ),
        }

        if not request.body:
            return options

        content_type = request.content_type.lower()
        if "application/json" in content_type:
            try:
                parsed = json.loads(request.body)
            except ValueError:
                # Not valid JSON after all; send it untouched.
                parsed = None
            if parsed is None:
                # httpx treats json=None as "no body", so a literal null goes raw
                options["content"] = request.body
            else:
                options["json"] = parsed
        elif "application/x-www-form-urlencoded" in content_type:
            options["data"] = parse_qs(request.body.decode("utf-8", errors="replace"), keep_blank_values=True)
        else:
            options["content"] = request.body
        return options

    # -------------------------
    # Retry loop
    # -------------------------
    async def forward(self, request: ProxyRequest) -> UpstreamResponse:
        method = request.method.upper()
        target_url = self.build_target_url(request)
        try:
            options = self.build_request_options(request)
        except Exception as exc:
            logger.error("Unexpected error preparing upstream request: %r", exc)
            raise InternalProxyError(cause=exc) from exc

        state = RetryState(
            max_retries=self.settings.max_retries,
            backoff_ms=self.settings.backoff_ms,
        )

        while True:
            self._log_request(method, target_url, request, options)
            outcome, response = await self._attempt(method, target_url, options, state)

            if isinstance(outcome, Ok):
                return await self._relay(response)

            if isinstance(outcome, Fail):
                self._log_failure(outcome.error, target_url, state)
                raise outcome.error

            logger.warning(
                "Upstream %s for %s %s, retrying in %dms (retry %d/%d)",
                outcome.reason,
                method,
                target_url,
                outcome.delay_ms,
                state.attempt_count + 1,
                state.max_retries,
            )
            await self._sleep(outcome.delay_ms / 1000)
            state.record(outcome)
            if not state.can_retry():
                break

        logger.error(
            "Maximum number of retries exceeded for %s %s (%d attempts)",
            method,
            target_url,
            state.attempt_count,
        )
        raise RetriesExhausted()

    async def _attempt(
        self,
        method: str,
        url: str,
        options: Dict[str, Any],
        state: RetryState,
    ) -> Tuple[Outcome, Optional[httpx.Response]]:
        try:
            upstream_request = self.client.build_request(method, url, **options)
            # bounds the whole attempt up to the response headers, not each phase
            response = await asyncio.wait_for(
                self.client.send(upstream_request, stream=True, follow_redirects=True),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            timeout = httpx.ReadTimeout(
                f"No upstream response within {self.settings.timeout_ms}ms",
                request=upstream_request,
            )
            return decide(state, error=timeout), None
        except Exception as exc:
            return decide(state, error=exc), None

        try:
            outcome = decide(state, response=response)
            if not isinstance(outcome, Ok):
                await self._log_error_response(response)
                await response.aclose()
            return outcome, response
        except BaseException:
            await response.aclose()
            raise

    # -------------------------
    # Response relay
    # -------------------------
    async def _relay(self, response: httpx.Response) -> UpstreamResponse:
        headers = filter_response_headers(HeaderMap.from_pairs(response.headers.multi_items()))

        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > STREAM_THRESHOLD_BYTES:
            logger.debug("Streaming upstream body (%s bytes declared)", declared)
            return UpstreamResponse(
                status_code=response.status_code,
                headers=headers,
                chunks=self._stream(response, b"", response.aiter_bytes(CHUNK_SIZE)),
            )

        chunks = response.aiter_bytes(CHUNK_SIZE)
        buffer = bytearray()
        try:
            async for chunk in chunks:
                buffer.extend(chunk)
                if len(buffer) > STREAM_THRESHOLD_BYTES:
                    # Unknown length and already past the threshold: stop
                    # buffering and stream the rest.
                    logger.debug("Upstream body passed %d bytes, switching to streaming", STREAM_THRESHOLD_BYTES)
                    return UpstreamResponse(
                        status_code=response.status_code,
                        headers=headers,
                        chunks=self._stream(response, bytes(buffer), chunks),
                    )
        except BaseException:
            await response.aclose()
            raise

        await response.aclose()
        body = bytes(buffer)
        if response.status_code >= 400:
            self._log_error_body(response.status_code, headers, body)
        return UpstreamResponse(status_code=response.status_code, headers=headers, body=body)

    async def _stream(
        self,
        response: httpx.Response,
        prefix: bytes,
        rest: AsyncIterator[bytes],
    ) -> AsyncIterator[bytes]:
        try:
            for i in range(0, len(prefix), CHUNK_SIZE):
                yield prefix[i:i + CHUNK_SIZE]
            async for chunk in rest:
                yield chunk
        finally:
            await response.aclose()

    # -------------------------
    # Logging
    # -------------------------
    def _log_request(self, method: str, target_url: str, request: ProxyRequest, options: Dict[str, Any]) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        data: Dict[str, Any] = {
            "method": method,
            "target_url": target_url,
            "headers": redact(HeaderMap(options["headers"])),
            "query": request.query,
        }
        if method not in NO_BODY_METHODS:
            size = len(request.body)
            if 0 < size < REQUEST_BODY_LOG_LIMIT:
                data["body"] = _preview(request.body, request.content_type)
            elif size > 0:
                data["body_size"] = f"{size} bytes"
        logger.debug("Forwarding request %s", _safe_json(data))

    async def _log_error_response(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        headers = HeaderMap.from_pairs(response.headers.multi_items())
        declared = response.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) >= ERROR_BODY_LOG_LIMIT:
            self._log_error_body(response.status_code, headers, None, int(declared))
            return
        try:
            body = await response.aread()
        except httpx.HTTPError:
            body = b""
        self._log_error_body(response.status_code, headers, body)

    def _log_error_body(
        self,
        status_code: int,
        headers: HeaderMap,
        body: Optional[bytes],
        size: Optional[int] = None,
    ) -> None:
        data: Dict[str, Any] = {"status": status_code, "headers": redact(headers)}
        size = len(body) if body is not None else size
        if body and len(body) < ERROR_BODY_LOG_LIMIT:
            data["body"] = _preview(body, headers.get("content-type", ""))
            error = parse_error_body(body)
            if error:
                data["error"] = error
        elif size:
            data["body_size"] = f"{size} bytes"
        logger.error("API error response %s", _safe_json(data))

    def _log_failure(self, error: ApiError, target_url: str, state: RetryState) -> None:
        cause = error.cause
        logger.error(
            "%s: %s %s",
            error.message,
            target_url,
            _safe_json({
                "status_code": error.status_code,
                "attempts": state.attempt_count + 1,
                "exception": type(cause).__name__ if cause else None,
                "detail": str(cause) if cause else None,
            }),
        )
