"""HTTP helpers shared by GPS vendor adapters."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any

import httpx

from fleetsync.core.exceptions import ProviderAuthError, ProviderError, TransientProviderError
from fleetsync.storage.provider_logs import record_provider_log


def extract_error_body(response: httpx.Response) -> Any:
    """Return structured error details if available, else a trimmed text body."""

    try:
        return response.json()
    except ValueError:
        text = getattr(response, "text", None)
        if text:
            stripped = text.strip()
            if stripped:
                return stripped
        return None


def build_error_log(
    *,
    error_type: str,
    message: str,
    status_code: int | None = None,
    response_body: Any | None = None,
) -> dict[str, Any]:
    """Assemble a consistent provider error log payload."""

    payload: dict[str, Any] = {
        "error": {
            "type": error_type,
            "message": message,
        }
    }
    if status_code is not None:
        payload["error"]["status_code"] = status_code
    if response_body is not None:
        payload["response"] = response_body
    return payload


async def _get(
    provider_id: str,
    url: str,
    *,
    headers: dict[str, str],
    timeout: float,
    request_log: dict[str, Any],
    unauthorized_message: str,
    forbidden_message: str,
) -> httpx.Response:
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url, headers=headers)
    except httpx.TimeoutException as exc:
        record_provider_log(
            provider_id,
            request_body=request_log,
            response_body=build_error_log(error_type="timeout", message=str(exc)),
        )
        raise TransientProviderError(
            provider_id,
            message="Connection timeout - the API took too long to respond",
        ) from exc
    except httpx.RequestError as exc:
        record_provider_log(
            provider_id,
            request_body=request_log,
            response_body=build_error_log(error_type="network", message=str(exc)),
        )
        raise TransientProviderError(provider_id, message="Provider request failed") from exc

    if response.status_code in {HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN}:
        unauthorized = response.status_code == HTTPStatus.UNAUTHORIZED
        record_provider_log(
            provider_id,
            request_body=request_log,
            response_body=build_error_log(
                error_type="unauthorized" if unauthorized else "forbidden",
                message=f"HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=extract_error_body(response),
            ),
        )
        raise ProviderAuthError(
            provider_id,
            message=unauthorized_message if unauthorized else forbidden_message,
            status_code=response.status_code,
        )

    if response.is_error:
        record_provider_log(
            provider_id,
            request_body=request_log,
            response_body=build_error_log(
                error_type="http_error",
                message=f"HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=extract_error_body(response),
            ),
        )
        message = f"HTTP {response.status_code}"
        if response.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR:
            raise TransientProviderError(provider_id, message=message)
        raise ProviderError(provider_id, message=message)

    return response


async def fetch_json(
    provider_id: str,
    url: str,
    *,
    headers: dict[str, str],
    timeout: float,
    unauthorized_message: str = "Invalid credentials",
    forbidden_message: str = "Access denied - check API permissions",
) -> Any:
    """GET ``url`` and return the decoded body, mapping failures onto provider errors.

    Every call, successful or not, is written to the provider log.
    """
    request_log = {"method": "GET", "url": url}
    response = await _get(
        provider_id,
        url,
        headers=headers,
        timeout=timeout,
        request_log=request_log,
        unauthorized_message=unauthorized_message,
        forbidden_message=forbidden_message,
    )

    try:
        data = response.json()
    except ValueError as exc:
        record_provider_log(
            provider_id,
            request_body=request_log,
            response_body=build_error_log(
                error_type="unexpected_response",
                message="Response was not JSON",
                response_body=extract_error_body(response),
            ),
        )
        raise ProviderError(provider_id, message="Unexpected response format") from exc

    record_provider_log(provider_id, request_body=request_log, response_body=data)
    return data


async def fetch_text(
    provider_id: str,
    url: str,
    *,
    headers: dict[str, str],
    timeout: float,
    log_url: str | None = None,
    unauthorized_message: str = "Invalid credentials",
    forbidden_message: str = "Access denied - check API permissions",
) -> str:
    """GET ``url`` and return the raw body text.

    ``log_url`` replaces ``url`` in the provider log when the query string
    carries credentials.
    """
    request_log = {"method": "GET", "url": log_url or url}
    response = await _get(
        provider_id,
        url,
        headers=headers,
        timeout=timeout,
        request_log=request_log,
        unauthorized_message=unauthorized_message,
        forbidden_message=forbidden_message,
    )
    text = response.text
    record_provider_log(provider_id, request_body=request_log, response_body=text)
    return text


__all__ = ["build_error_log", "extract_error_body", "fetch_json", "fetch_text"]
