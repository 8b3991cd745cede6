"""Authorization validators supplied to the simulator at composition time."""

from .validators import (
    AllowAllAuthValidator,
    ApiKeyAuthValidator,
    AuthValidator,
    create_auth_validator,
    decode_header_param,
    normalize_auth,
)

__all__ = [
    "AllowAllAuthValidator",
    "ApiKeyAuthValidator",
    "AuthValidator",
    "create_auth_validator",
    "decode_header_param",
    "normalize_auth",
]
