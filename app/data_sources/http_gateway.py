"""Shared timeout-bounded, cached and retrying HTTP session for every provider."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, TypeVar

import requests
import requests_cache
from retry_requests import retry

from app.config import settings
from app.domain import ProviderStatus
from app.errors import InputValidationError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="http_gateway")

cache_session = requests_cache.CachedSession(settings.http_cache_name,
                                             expire_after=settings.http_cache_expire_seconds)
session = retry(cache_session, retries=settings.provider_retries,
                backoff_factor=settings.retry_backoff_factor)

# Failures a provider call may raise that callers are expected to recover from.
RECOVERABLE_ERRORS = (requests.RequestException, ValueError, KeyError, TypeError, IndexError)

T = TypeVar("T")


def _headers(extra: Optional[dict] = None) -> dict:
    headers = {"User-Agent": settings.user_agent, "Accept": "application/geo+json, application/json, */*"}
    if extra:
        headers.update(extra)
    return headers


def get_response(url: str, params: Optional[dict] = None, *, timeout: Optional[float] = None,
                 headers: Optional[dict] = None, retrying: bool = True) -> requests.Response:
    """GET ``url`` and raise for non-2xx responses.

    ``retrying=False`` goes through the cache only, for callers that run their own attempt loop.
    """
    client = session if retrying else cache_session
    resp = client.get(url, params=params, headers=_headers(headers),
                      timeout=timeout or settings.request_timeout_seconds)
    resp.raise_for_status()
    return resp


def get_json(url: str, params: Optional[dict] = None, *, timeout: Optional[float] = None,
             headers: Optional[dict] = None) -> Any:
    """GET ``url`` and decode the JSON body."""
    return get_response(url, params=params, timeout=timeout, headers=headers).json()


def get_text(url: str, params: Optional[dict] = None, *, timeout: Optional[float] = None,
             headers: Optional[dict] = None) -> str:
    """GET ``url`` and return the body text."""
    return get_response(url, params=params, timeout=timeout, headers=headers).text


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class ProviderResult(Generic[T]):
    """Result of a single external call; created per call and never persisted."""
    status: ProviderStatus
    data: Optional[T]
    source: str
    fetched_at: dt.datetime = field(default_factory=utc_now)
    error: Optional[str] = None

    @classmethod
    def ok(cls, source: str, data: T) -> "ProviderResult[T]":
        return cls(status=ProviderStatus.OK, data=data, source=source)

    @classmethod
    def degraded(cls, source: str, data: T, error: Optional[str] = None) -> "ProviderResult[T]":
        return cls(status=ProviderStatus.DEGRADED, data=data, source=source, error=error)

    @classmethod
    def unavailable(cls, source: str, error: Optional[str] = None) -> "ProviderResult[T]":
        return cls(status=ProviderStatus.UNAVAILABLE, data=None, source=source, error=error)

    @property
    def available(self) -> bool:
        return self.status != ProviderStatus.UNAVAILABLE and self.data is not None


def call_provider(source: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> ProviderResult[T]:
    """Run one provider call and capture recoverable failures as ``unavailable``.

    ``InputValidationError`` is terminal and always propagates.
    """
    try:
        data = func(*args, **kwargs)
    except InputValidationError:
        raise
    except RECOVERABLE_ERRORS as exc:
        logger.warning("Provider call failed", extra={"source": source, "error": repr(exc)})
        return ProviderResult.unavailable(source, error=str(exc))
    if data is None:
        return ProviderResult.unavailable(source, error="empty response")
    return ProviderResult.ok(source, data)
