"""
HTTP plumbing for identity provider calls.
"""

import time
from typing import Any, Dict, Optional

import httpx

from shared.logging import get_logger
from shared.metrics import OIDCMetrics
from .errors import ProviderCommunicationError

logger = get_logger("oidc.transport")


def _error_detail(response: httpx.Response) -> Any:
    """Extract the provider's ``detail`` field, falling back to the raw body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict) and "detail" in body:
        return body["detail"]
    return body


async def provider_request(
    http_client: httpx.AsyncClient,
    endpoint: str,
    method: str,
    url: str,
    *,
    metrics: Optional[OIDCMetrics] = None,
    **kwargs: Any,
) -> Dict[str, Any]:
    """Perform one provider call and return its JSON object body.

    Transport errors, non-2xx statuses and bodies that are not a JSON
    object all raise ProviderCommunicationError. Nothing is retried.
    """
    start_time = time.perf_counter()
    status = "error"
    try:
        try:
            response = await http_client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error("Identity provider unreachable", endpoint=endpoint, url=url, error=str(e))
            raise ProviderCommunicationError(
                f"{endpoint} request failed: {e}", endpoint=endpoint
            ) from e

        status = str(response.status_code)
        if not response.is_success:
            detail = _error_detail(response)
            logger.warning(
                "Identity provider returned an error",
                endpoint=endpoint,
                status_code=response.status_code,
                detail=detail,
            )
            raise ProviderCommunicationError(
                f"{endpoint} returned HTTP {response.status_code}",
                status_code=response.status_code,
                detail=detail,
                endpoint=endpoint,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderCommunicationError(
                f"{endpoint} returned a malformed body",
                status_code=response.status_code,
                endpoint=endpoint,
            ) from e
        if not isinstance(payload, dict):
            raise ProviderCommunicationError(
                f"{endpoint} returned a non-object body",
                status_code=response.status_code,
                endpoint=endpoint,
            )
        return payload
    finally:
        if metrics is not None:
            metrics.record_provider_request(endpoint, status, time.perf_counter() - start_time)
