"""HTTP client with retries, timeouts, and rate limiting."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from types import TracebackType
from typing import Any

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from fieldsync.common.constants import USER_AGENT
from fieldsync.common.errors import HttpRequestError, RetryableHttpError, SessionExpiredError

RETRYABLE_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 10.0
    read: float = 60.0


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 5
    multiplier: float = 1.0
    max_wait: float = 30.0


class TokenBucket:
    def __init__(self, rate_per_sec: float, capacity: float | None = None) -> None:
        self.rate_per_sec = rate_per_sec
        self.capacity = capacity if capacity is not None else rate_per_sec
        self.tokens = self.capacity
        self.updated_at = time.monotonic()
        self.lock = threading.Lock()

    def acquire(self, tokens: float = 1.0) -> None:
        while True:
            with self.lock:
                now = time.monotonic()
                elapsed = now - self.updated_at
                self.tokens = min(self.capacity, self.tokens + elapsed * self.rate_per_sec)
                self.updated_at = now
                if self.tokens >= tokens:
                    self.tokens -= tokens
                    return
                deficit = tokens - self.tokens
                wait_for = max(deficit / self.rate_per_sec, 0.01)
            time.sleep(wait_for)


def _remote_message(response: requests.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return None


class HttpClient:
    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: TimeoutConfig | None = None,
        retry: RetryConfig | None = None,
        auth_token: str | None = None,
        rate_per_sec: float = 5.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or TimeoutConfig()
        self.retry = retry or RetryConfig()
        self.auth_token = auth_token
        self.session = requests.Session()
        self.limiter = TokenBucket(rate_per_sec=rate_per_sec)

    @classmethod
    def from_config(cls, api_cfg: dict) -> "HttpClient":
        return cls(
            api_cfg["base_url"],
            timeout=TimeoutConfig(**api_cfg["timeout"]),
            retry=RetryConfig(**api_cfg["retry"]),
            auth_token=api_cfg.get("auth_token"),
            rate_per_sec=float(api_cfg.get("rate_per_sec", 5.0)),
        )

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        out = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if self.auth_token:
            out["Authorization"] = f"Bearer {self.auth_token}"
        if headers:
            out.update(headers)
        return out

    def _raise_for_status_or_retry(self, response: requests.Response) -> None:
        status = response.status_code
        if status in RETRYABLE_STATUS_CODES:
            raise RetryableHttpError(f"Retryable HTTP status: {status}", status_code=status)
        if status == 401:
            raise SessionExpiredError("HTTP status: 401", status_code=status)
        if status >= 400:
            detail = _remote_message(response)
            message = f"HTTP status: {status}" + (f" ({detail})" if detail else "")
            raise HttpRequestError(message, status_code=status)

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> dict[str, Any]:
        req_timeout = timeout or self.timeout
        self.limiter.acquire()

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_body,
                headers=self._headers(headers),
                timeout=(req_timeout.connect, req_timeout.read),
            )
        except requests.RequestException as exc:
            raise RetryableHttpError(f"Transport failure for {url}: {exc}") from exc
        self._raise_for_status_or_retry(response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise HttpRequestError(f"Invalid JSON payload from {url}", status_code=response.status_code) from exc

        return payload

    def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
        max_attempts: int | None = None,
    ) -> dict[str, Any]:
        url = self._url(path)

        @retry(
            stop=stop_after_attempt(max_attempts or self.retry.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.retry.multiplier,
                max=self.retry.max_wait,
                jitter=1.0,
            ),
            retry=retry_if_exception_type(RetryableHttpError),
            reraise=True,
        )
        def _wrapped() -> dict[str, Any]:
            return self._request_json(
                method,
                url,
                params=params,
                json_body=json_body,
                headers=headers,
                timeout=timeout,
            )

        return _wrapped()

    def get_json(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
        max_attempts: int | None = None,
    ) -> dict[str, Any]:
        return self.request_json(
            "GET",
            path,
            params=params,
            headers=headers,
            timeout=timeout,
            max_attempts=max_attempts,
        )

    def post_json(
        self,
        path: str,
        *,
        body: Any,
        headers: dict[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
        max_attempts: int | None = None,
    ) -> dict[str, Any]:
        merged = {"Content-Type": "application/json"}
        if headers:
            merged.update(headers)
        return self.request_json(
            "POST",
            path,
            json_body=body,
            headers=merged,
            timeout=timeout,
            max_attempts=max_attempts,
        )

    def head_ok(self, path: str, *, timeout: TimeoutConfig | None = None) -> bool:
        req_timeout = timeout or TimeoutConfig(connect=3.0, read=5.0)
        try:
            response = self.session.request(
                method="HEAD",
                url=self._url(path),
                headers=self._headers(None),
                timeout=(req_timeout.connect, req_timeout.read),
            )
        except requests.RequestException:
            return False
        return response.status_code < 500
