"""Unverified access-token claim reader.

Signatures are the provider's responsibility; these helpers only read
claims the provider put in its own token (subject, email, expiry, aal)
so a restored session can be described without a network round trip.
"""

from __future__ import annotations

import logging

from datetime import datetime, timezone
from typing import Any

import jwt

from ..state.types import AssuranceLevel


logger = logging.getLogger("storefront_auth.auth")


def decode_claims(token: str) -> dict[str, Any]:
    """Decode JWT claims without verifying the signature.

    Parameters
    ----------
    token : str
        A JWT access token.

    Returns
    -------
    dict[str, Any]
        The claims, or an empty dict if the token is not a readable JWT.
    """
    if not token:
        return {}
    try:
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False, "verify_aud": False},
            algorithms=["HS256", "RS256", "ES256"],
        )
    except jwt.PyJWTError as exc:
        logger.debug("Access token claims unreadable: %s", exc)
        return {}


def user_id_from_token(token: str) -> str | None:
    """Return the ``sub`` claim."""
    return decode_claims(token).get("sub")


def email_from_token(token: str) -> str | None:
    """Return the ``email`` claim."""
    return decode_claims(token).get("email")


def expiry_from_token(token: str) -> datetime | None:
    """Return the ``exp`` claim as an aware UTC datetime."""
    exp = decode_claims(token).get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)


def assurance_level_from_token(token: str) -> AssuranceLevel | None:
    """Return the ``aal`` claim, or None when absent or unrecognised."""
    aal = decode_claims(token).get("aal")
    try:
        return AssuranceLevel(aal) if aal else None
    except ValueError:
        return None
