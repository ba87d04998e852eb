"""Translation of HTTP failures into flotilla provider errors."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import requests

from flotilla.providers.exceptions import (
    ConfigValidationError,
    LeaseConflictError,
    MachineNotFoundError,
    ProviderAPIError,
    ProviderConnectionError,
    ProviderCredentialsError,
)

logger = logging.getLogger(__name__)


def error_from_response(response: requests.Response) -> ProviderAPIError | ProviderCredentialsError:
    """Build the provider error matching an error response.

    Parameters
    ----------
    response : requests.Response
        Response with a status code of 400 or above

    Returns
    -------
    ProviderAPIError | ProviderCredentialsError
        Error instance matching the status code
    """
    message = ""
    error_code = None

    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        message = body.get("error") or body.get("message") or ""
        error_code = body.get("code")

    if not message:
        message = response.text.strip() or response.reason or "unknown error"

    status = response.status_code

    if status in (401, 403):
        return ProviderCredentialsError(message)
    if status == 404:
        return MachineNotFoundError(message, error_code=error_code or "not_found", status_code=status)
    if status == 409:
        return LeaseConflictError(message, error_code=error_code or "lease_conflict", status_code=status)
    if status in (400, 422):
        return ConfigValidationError(message, error_code=error_code or "invalid_config", status_code=status)

    return ProviderAPIError(message, error_code=error_code, status_code=status)


@contextmanager
def handle_api_errors() -> Iterator[None]:
    """Convert requests transport failures into provider errors.

    Raises
    ------
    ProviderConnectionError
        If the platform could not be reached, did not answer in time or the
        exchange failed in transit
    """
    try:
        yield
    except requests.exceptions.Timeout as e:
        logger.debug("Platform request timed out: %s", e)
        raise ProviderConnectionError(f"platform API request timed out: {e}") from e
    except requests.exceptions.ConnectionError as e:
        logger.debug("Platform connection failed: %s", e)
        raise ProviderConnectionError(f"could not reach platform API: {e}") from e
    except requests.exceptions.RequestException as e:
        logger.debug("Platform request failed: %s", e)
        raise ProviderConnectionError(f"platform API request failed: {e}") from e
