"""JSON-over-HTTP helper that maps transport failures onto the error taxonomy."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from codecompass.exceptions import (
    AuthenticationError,
    ConnectivityError,
    MalformedResponseError,
    NotFoundError,
    RateLimitedError,
    ServiceError,
)

LOGGER = logging.getLogger(__name__)


def raise_for_status(response: httpx.Response, service: str) -> None:
    """Translate a non-success HTTP status into a ``CodeCompassError`` subclass."""
    status = response.status_code
    if status < 400:
        return

    body = response.text[:300]
    if status == 429:
        raise RateLimitedError(f"{service} rate limit exceeded (HTTP 429): {body}")
    if status in (401, 403):
        raise AuthenticationError(
            f"{service} rejected the credentials (HTTP {status}), check your API key"
        )
    if status == 404:
        raise NotFoundError(f"{service} resource not found (HTTP 404): {response.request.url}")
    if status >= 500:
        raise ConnectivityError(f"{service} unavailable (HTTP {status}): {body}")
    raise ServiceError(f"{service} request failed (HTTP {status}): {body}")


def send(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    service: str,
    json: Any = None,
    params: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> httpx.Response:
    """Send a request and return the successful response."""
    try:
        response = client.request(
            method,
            url,
            json=json,
            params=params,
            headers=headers,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
    except httpx.TimeoutException as exc:
        raise ConnectivityError(f"{service} request timed out: {exc}") from exc
    except httpx.RequestError as exc:
        raise ConnectivityError(f"{service} connection failed: {exc}") from exc

    LOGGER.debug("%s %s %s -> %d", service, method, url, response.status_code)
    raise_for_status(response, service)
    return response


def request_json(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    service: str,
    json: Any = None,
    params: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Send a request and decode a JSON object from the response body."""
    response = send(
        client,
        method,
        url,
        service=service,
        json=json,
        params=params,
        headers=headers,
        timeout=timeout,
    )
    try:
        data = response.json()
    except ValueError as exc:
        raise MalformedResponseError(f"{service} returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedResponseError(
            f"{service} returned {type(data).__name__} where a JSON object was expected"
        )
    return data
