"""Pluggable credential verification for chappy.

The verifier turns a bearer token into a principal (username + access
level). chappy trusts the username it gets back as-is. Sources are tried in
this order:

- CHAPPY_AUTH_MODULE: Python module path for custom auth (e.g., 'myapp.auth')
- CHAPPY_AUTH_URL: remote verifier service (see chappy.remote_auth)
- CHAPPY_TOKENS_FILE: YAML file mapping token -> {username, accessLevel}
- CHAPPY_NO_AUTH=1: development mode, the token itself is the username

Custom auth modules must expose:
- verify_bearer_token(token: str) -> AuthResult
- is_enabled() -> bool (optional)
"""

import importlib
import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from .models import Principal


@dataclass
class AuthResult:
    """Result of an authentication attempt."""

    valid: bool
    username: str | None = None
    access_level: str = "user"
    error: str | None = None

    def to_principal(self) -> Principal | None:
        if not self.valid or not self.username:
            return None
        return Principal(username=self.username, access_level=self.access_level)


def is_no_auth_mode() -> bool:
    """Check if the server runs in no-auth mode (for development)."""
    return os.environ.get("CHAPPY_NO_AUTH", "").lower() in ("1", "true", "yes")


def _get_auth_module():
    """Get the configured auth module, or None if not configured."""
    custom_module = os.environ.get("CHAPPY_AUTH_MODULE")
    if custom_module:
        try:
            return importlib.import_module(custom_module)
        except ImportError as e:
            raise ImportError(f"Failed to import auth module '{custom_module}': {e}") from e

    if os.environ.get("CHAPPY_AUTH_URL"):
        from . import remote_auth

        return remote_auth

    return None


def _verify_from_tokens_file(path: str, token: str) -> AuthResult:
    with open(Path(path)) as f:
        tokens = yaml.safe_load(f) or {}

    entry = tokens.get(token) if isinstance(tokens, dict) else None
    if not isinstance(entry, dict) or not entry.get("username"):
        return AuthResult(valid=False, error="Invalid token")
    return AuthResult(
        valid=True,
        username=str(entry["username"]),
        access_level=str(entry.get("accessLevel") or "user"),
    )


def is_auth_enabled() -> bool:
    """Check if any credential verifier is configured."""
    module = _get_auth_module()
    if module is not None:
        if hasattr(module, "is_enabled"):
            return module.is_enabled()
        return True
    return bool(os.environ.get("CHAPPY_TOKENS_FILE")) or is_no_auth_mode()


def verify_bearer_token(token: str) -> AuthResult:
    """
    Verify a bearer token using the configured source.

    Args:
        token: The bearer token to verify

    Returns:
        AuthResult with validation status and the principal's details
    """
    module = _get_auth_module()
    if module is not None:
        return module.verify_bearer_token(token)

    tokens_file = os.environ.get("CHAPPY_TOKENS_FILE")
    if tokens_file:
        return _verify_from_tokens_file(tokens_file, token)

    if is_no_auth_mode():
        return AuthResult(valid=bool(token), username=token or None, error=None if token else "Empty token")

    return AuthResult(valid=False, error="No auth method configured")


def extract_bearer_token(authorization: str | None) -> str | None:
    """
    Extract bearer token from Authorization header.

    Args:
        authorization: The full Authorization header value

    Returns:
        The token if valid Bearer format, None otherwise
    """
    if not authorization:
        return None

    parts = authorization.split(" ", 1)
    if len(parts) != 2:
        return None

    scheme, token = parts
    if scheme.lower() != "bearer":
        return None

    return token.strip() or None


def get_auth_method_name() -> str:
    """Get the name of the current auth method for logging/debugging."""
    custom_module = os.environ.get("CHAPPY_AUTH_MODULE")
    if custom_module:
        return f"custom:{custom_module}"
    if os.environ.get("CHAPPY_AUTH_URL"):
        return "remote"
    if os.environ.get("CHAPPY_TOKENS_FILE"):
        return "tokens-file"
    if is_no_auth_mode():
        return "no-auth"
    return "none"
