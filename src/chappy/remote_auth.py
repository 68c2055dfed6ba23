"""Credential verification against a remote auth service."""

import os

import httpx

from .auth_provider import AuthResult


def get_auth_url() -> str | None:
    """Get the auth service URL from environment."""
    return os.environ.get("CHAPPY_AUTH_URL")


def is_enabled() -> bool:
    return bool(get_auth_url())


def verify_bearer_token(token: str) -> AuthResult:
    """
    Verify a bearer token against the auth service.

    The service answers POST {url}/verify with
    {"valid": bool, "username": str, "accessLevel": str, "error": str}.

    Args:
        token: The bearer token to verify

    Returns:
        AuthResult with validation status and the principal's details
    """
    auth_url = get_auth_url()
    if not auth_url:
        return AuthResult(valid=False, error="CHAPPY_AUTH_URL not configured")

    try:
        response = httpx.post(
            f"{auth_url}/verify",
            json={"token": token},
            timeout=5.0,
        )
    except httpx.RequestError as e:
        return AuthResult(valid=False, error=f"Auth service unavailable: {e}")

    if response.status_code != 200:
        return AuthResult(valid=False, error=f"Auth service returned {response.status_code}")

    data = response.json()
    return AuthResult(
        valid=bool(data.get("valid", False)),
        username=data.get("username"),
        access_level=data.get("accessLevel") or "user",
        error=data.get("error"),
    )
