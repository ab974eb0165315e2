"""Identity provider error decoding.

Provider error bodies come in several shapes: ``{"error_code", "msg"}``,
OAuth style ``{"error", "error_description"}``, bare strings, or JSON
text. ``decode_provider_error`` never assumes one of them; it attempts a
structured parse and falls back to substring heuristics on free text.
"""

from __future__ import annotations

import json

from dataclasses import dataclass
from typing import Any, Literal


PayloadKind = Literal["structured", "heuristic", "unknown"]


@dataclass(frozen=True)
class ProviderErrorPayload:
    """A decoded provider error.

    Attributes
    ----------
    kind : str
        ``structured`` when the code came from a recognised field,
        ``heuristic`` when it was inferred from the message text,
        ``unknown`` when no code could be determined.
    code : str or None
        Machine-readable error code.
    message : str
        The provider's own message (not user-facing).
    status : int or None
        HTTP status code, when known.
    raw : Any
        The undecoded payload, for diagnostics.
    """

    kind: PayloadKind
    code: str | None
    message: str
    status: int | None = None
    raw: Any = None

    @property
    def friendly_message(self) -> str:
        """User-facing message for this error."""
        return friendly_message(self.code)


FRIENDLY_MESSAGES: dict[str, str] = {
    "invalid_credentials": "Invalid email or password. Please try again.",
    "email_not_confirmed": "Please verify your email before signing in.",
    "user_already_exists": "An account with this email already exists.",
    "email_exists": "An account with this email already exists.",
    "user_not_found": "No account was found for this email.",
    "weak_password": "Password is too weak. Use at least 8 characters with letters and numbers.",
    "same_password": "The new password must differ from the current one.",
    "signup_disabled": "New sign-ups are currently disabled.",
    "validation_failed": "Some of the details you entered are invalid.",
    "over_request_rate_limit": "Too many attempts. Please wait a moment and try again.",
    "over_email_send_rate_limit": "Too many emails sent. Please wait before requesting another.",
    "otp_expired": "This link or code has expired. Please request a new one.",
    "bad_code_verifier": "Your sign-in attempt expired. Please sign in again.",
    "flow_state_not_found": "Your sign-in attempt expired. Please sign in again.",
    "flow_state_expired": "Your sign-in attempt expired. Please sign in again.",
    "refresh_token_not_found": "Your session has expired. Please sign in again.",
    "refresh_token_already_used": "Your session has expired. Please sign in again.",
    "session_not_found": "Your session has expired. Please sign in again.",
    "session_expired": "Your session has expired. Please sign in again.",
    "mfa_verification_failed": "Invalid verification code. Please check your authenticator app.",
    "mfa_challenge_expired": "The verification request expired. Please try again.",
    "mfa_factor_not_found": "This authenticator is no longer registered.",
    "mfa_enroll_not_enabled": "Two-factor authentication is not available.",
    "network_error": "Could not reach the sign-in service. Check your connection.",
}

GENERIC_MESSAGE = "Something went wrong. Please try again."

#: Codes after which the stored refresh token can never succeed again.
UNRECOVERABLE_SESSION_CODES: frozenset[str] = frozenset(
    {
        "refresh_token_not_found",
        "refresh_token_already_used",
        "session_not_found",
        "session_expired",
        "user_not_found",
    }
)

# Ordered: first match wins
_HEURISTICS: tuple[tuple[str, str], ...] = (
    ("invalid login credentials", "invalid_credentials"),
    ("invalid credentials", "invalid_credentials"),
    ("invalid email or password", "invalid_credentials"),
    ("email not confirmed", "email_not_confirmed"),
    ("already registered", "user_already_exists"),
    ("already exists", "user_already_exists"),
    ("user not found", "user_not_found"),
    ("rate limit", "over_request_rate_limit"),
    ("too many requests", "over_request_rate_limit"),
    ("password should", "weak_password"),
    ("weak password", "weak_password"),
    ("refresh token: already used", "refresh_token_already_used"),
    ("refresh token already used", "refresh_token_already_used"),
    ("refresh token not found", "refresh_token_not_found"),
    ("invalid refresh token", "refresh_token_not_found"),
    ("code verifier", "bad_code_verifier"),
    ("flow state", "flow_state_not_found"),
    ("invalid totp code", "mfa_verification_failed"),
    ("challenge has expired", "mfa_challenge_expired"),
    ("challenge expired", "mfa_challenge_expired"),
    ("token has expired", "otp_expired"),
    ("otp has expired", "otp_expired"),
)

_MESSAGE_FIELDS = ("msg", "message", "error_description", "error_message", "error")


def friendly_message(code: str | None) -> str:
    """Translate an error code into a user-facing message.

    Parameters
    ----------
    code : str or None
        Provider error code.

    Returns
    -------
    str
        The table entry, or a generic message with the raw code appended.
    """
    if code and code in FRIENDLY_MESSAGES:
        return FRIENDLY_MESSAGES[code]
    if code:
        return f"{GENERIC_MESSAGE} (code: {code})"
    return GENERIC_MESSAGE


def _guess_code(text: str) -> str | None:
    """Infer an error code from free text."""
    lowered = text.lower()
    for needle, code in _HEURISTICS:
        if needle in lowered:
            return code
    return None


def _looks_like_code(value: Any) -> bool:
    """Whether ``value`` is a snake_case identifier rather than prose."""
    return (
        isinstance(value, str)
        and bool(value)
        and " " not in value
        and value.replace("_", "").isalnum()
        and value.lower() == value
    )


def _decode_mapping(raw: dict[str, Any], status: int | None) -> ProviderErrorPayload:
    """Decode a dict-shaped provider error body."""
    # GoTrue puts the HTTP status in a numeric "code" field
    raw_code = raw.get("code")
    if isinstance(raw_code, int) and not isinstance(raw_code, bool):
        status = status if status is not None else raw_code
        raw_code = None
    if status is None and isinstance(raw.get("status"), int):
        status = raw["status"]

    message = ""
    for field_name in _MESSAGE_FIELDS:
        value = raw.get(field_name)
        if isinstance(value, str) and value:
            message = value
            break

    for candidate in (raw.get("error_code"), raw_code):
        if _looks_like_code(candidate):
            return ProviderErrorPayload("structured", candidate, message or candidate, status, raw)

    nested = raw.get("error")
    if isinstance(nested, dict):
        inner = _decode_mapping(nested, status)
        return ProviderErrorPayload(inner.kind, inner.code, inner.message, inner.status, raw)

    # OAuth style "error" values (invalid_grant, ...) are coarser than the description
    guessed = _guess_code(message) if message else None
    if guessed:
        return ProviderErrorPayload("heuristic", guessed, message, status, raw)
    if _looks_like_code(nested):
        return ProviderErrorPayload("structured", nested, message or nested, status, raw)
    return ProviderErrorPayload("unknown", None, message or GENERIC_MESSAGE, status, raw)


def decode_provider_error(raw: Any, status: int | None = None) -> ProviderErrorPayload:
    """Decode a provider error payload of unknown shape.

    Parameters
    ----------
    raw : Any
        Response body (dict, JSON text, bytes, plain text) or an exception.
    status : int, optional
        HTTP status code, when the caller has one.

    Returns
    -------
    ProviderErrorPayload
        The decoded error; never raises.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")

    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("{"):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                return _decode_mapping(parsed, status)
        guessed = _guess_code(text)
        if guessed:
            return ProviderErrorPayload("heuristic", guessed, text, status, raw)
        return ProviderErrorPayload("unknown", None, text or GENERIC_MESSAGE, status, raw)

    if isinstance(raw, dict):
        return _decode_mapping(raw, status)

    if raw is None:
        return ProviderErrorPayload("unknown", None, GENERIC_MESSAGE, status, raw)

    text = str(raw)
    guessed = _guess_code(text)
    kind: PayloadKind = "heuristic" if guessed else "unknown"
    return ProviderErrorPayload(kind, guessed, text or GENERIC_MESSAGE, status, raw)
