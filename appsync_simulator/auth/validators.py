"""
Authorization validators for realtime handshakes and HTTP operations.

The simulator does not decide who may call the API; it asks a validator
supplied at composition time. Validators receive the auth material merged
from every place a client can put it (HTTP headers, the base64 "header"
query parameter of the realtime upgrade, the connection_init payload) with
keys lower-cased.
"""

import base64
import binascii
import json
import secrets
from collections.abc import Mapping
from typing import Any, Protocol

from ..config.models import AuthConfig
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class AuthValidator(Protocol):
    """Decides whether a set of credentials may use the API."""

    def validate(self, auth: Mapping[str, Any]) -> bool:
        """
        Args:
            auth: Lower-cased auth material, e.g. {"x-api-key": "...", "authorization": "..."}

        Returns:
            bool: True to accept, False to reject
        """
        ...


class AllowAllAuthValidator:
    """Accepts every request; the default when no API key is configured."""

    def validate(self, auth: Mapping[str, Any]) -> bool:
        return True


class ApiKeyAuthValidator:
    """
    Accepts requests presenting the configured API key.

    When allow_authorization_header is set, any non-empty Authorization value
    is also accepted, mirroring a local mock where token verification is out
    of scope.
    """

    def __init__(self, api_key: str, allow_authorization_header: bool = False):
        if not api_key:
            raise ValueError("api_key must be a non-empty string")
        self._api_key = api_key
        self.allow_authorization_header = allow_authorization_header

    def validate(self, auth: Mapping[str, Any]) -> bool:
        presented = auth.get("x-api-key")
        if isinstance(presented, str) and secrets.compare_digest(presented, self._api_key):
            return True
        if self.allow_authorization_header and auth.get("authorization"):
            return True
        logger.debug("API key validation failed", presented=presented is not None)
        return False


def create_auth_validator(config: AuthConfig) -> AuthValidator:
    """Build the default validator for an AuthConfig."""
    if config.api_key:
        return ApiKeyAuthValidator(config.api_key, allow_authorization_header=False)
    if config.allow_anonymous:
        return AllowAllAuthValidator()
    # No key and anonymous access disabled: only an Authorization header gets in
    return _AuthorizationHeaderValidator()


class _AuthorizationHeaderValidator:
    def validate(self, auth: Mapping[str, Any]) -> bool:
        return bool(auth.get("authorization"))


def normalize_auth(*sources: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Merge auth material from several sources, later sources winning.

    A nested "headers" or "authorization" mapping (AppSync clients send
    {"authorization": {"x-api-key": ..., "host": ...}} in extensions) is
    flattened into the top level.
    """
    merged: dict[str, Any] = {}
    for source in sources:
        if not source:
            continue
        for key, value in source.items():
            lowered = str(key).lower()
            if lowered in ("headers", "authorization") and isinstance(value, Mapping):
                merged.update(normalize_auth(value))
            else:
                merged[lowered] = value
    return merged


def decode_header_param(raw: str | None) -> dict[str, Any]:
    """
    Decode the base64-encoded JSON "header" query parameter of a realtime upgrade.

    Returns:
        dict: The decoded headers, or {} if absent or undecodable
    """
    if not raw:
        return {}
    try:
        padded = raw + "=" * (-len(raw) % 4)
        decoded = json.loads(base64.b64decode(padded, altchars=b"-_").decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError, ValueError) as e:
        logger.warning("Could not decode realtime header parameter", error=str(e), error_type=type(e).__name__)
        return {}
    return decoded if isinstance(decoded, dict) else {}
