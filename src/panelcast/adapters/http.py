"""Shared httpx plumbing: one request, transport errors translated into the error taxonomy."""

from typing import Any, Optional
from urllib.parse import unquote, urlparse

import httpx

from panelcast.domain.errors import (
    AuthError,
    PermanentProviderError,
    ProviderError,
    TransientProviderError,
)

_RATE_LIMIT_MARKERS = ("rate limit", "too many requests")


def classify_provider_error(status_code: Optional[int], message: str, provider: str) -> ProviderError:
    """Map an HTTP status and body onto the retry taxonomy."""
    lowered = (message or "").lower()
    text = f"{provider} error {status_code}: {message}" if status_code else f"{provider} error: {message}"
    if status_code == 429 or any(marker in lowered for marker in _RATE_LIMIT_MARKERS):
        return TransientProviderError(text, status_code=status_code, provider=provider)
    if status_code in (401, 403):
        return AuthError(text, status_code=status_code, provider=provider)
    return PermanentProviderError(text, status_code=status_code, provider=provider)


async def send(
    method: str,
    url: str,
    *,
    provider: str,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one request. Any status >= 400 or transport failure raises a ProviderError."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.request(method, url, **kwargs)
    except httpx.TransportError as exc:
        raise PermanentProviderError(f"{provider} request failed: {exc}", provider=provider) from exc
    if response.status_code >= 400:
        raise classify_provider_error(response.status_code, response.text, provider)
    return response


def json_body(response: httpx.Response, provider: str) -> Any:
    """Decoded JSON body; a body that is not JSON is a permanent provider fault."""
    try:
        return response.json()
    except ValueError as exc:
        snippet = response.text[:200]
        raise PermanentProviderError(
            f"{provider} returned a non-JSON body: {snippet!r}",
            status_code=response.status_code,
            provider=provider,
        ) from exc


def as_percent(value: Any) -> int:
    """Provider progress as a whole percentage; anything unparseable counts as 0."""
    try:
        return int(float(value or 0))
    except (TypeError, ValueError, OverflowError):
        return 0


def dig(payload: Any, *keys: str) -> Any:
    """Walk nested dicts, returning None at the first missing key."""
    for key in keys:
        if not isinstance(payload, dict):
            return None
        payload = payload.get(key)
    return payload


def local_path(ref: str) -> Optional[str]:
    """Filesystem path for a file:// URI or bare path; None for remote URLs."""
    parsed = urlparse(ref)
    if parsed.scheme == "file":
        return unquote(parsed.path)
    if parsed.scheme in ("http", "https"):
        return None
    return ref
