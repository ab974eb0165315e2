"""Tests for provider error decoding and friendly messages."""

from __future__ import annotations

import pytest

from storefront_auth.auth.provider_errors import (
    FRIENDLY_MESSAGES,
    GENERIC_MESSAGE,
    decode_provider_error,
    friendly_message,
)


# ── Structured payloads ─────────────────────────────────────────────


class TestStructured:
    """Recognised fields produce a structured payload."""

    def test_gotrue_error_code(self) -> None:
        payload = decode_provider_error(
            {"code": 400, "error_code": "invalid_credentials", "msg": "Invalid login credentials"}
        )
        assert payload.kind == "structured"
        assert payload.code == "invalid_credentials"
        assert payload.status == 400
        assert payload.message == "Invalid login credentials"

    def test_explicit_status_wins_over_body(self) -> None:
        payload = decode_provider_error({"code": 400, "error_code": "weak_password"}, status=422)
        assert payload.status == 422

    def test_string_code_field(self) -> None:
        payload = decode_provider_error({"code": "email_not_confirmed", "message": "Email not confirmed"})
        assert payload.kind == "structured"
        assert payload.code == "email_not_confirmed"

    def test_json_text(self) -> None:
        payload = decode_provider_error('{"error_code": "same_password", "msg": "New password should differ"}')
        assert payload.kind == "structured"
        assert payload.code == "same_password"

    def test_bytes(self) -> None:
        payload = decode_provider_error(b'{"error_code": "otp_expired", "msg": "Token has expired"}')
        assert payload.code == "otp_expired"

    def test_nested_error_object(self) -> None:
        payload = decode_provider_error({"error": {"error_code": "session_not_found", "msg": "gone"}})
        assert payload.kind == "structured"
        assert payload.code == "session_not_found"

    def test_oauth_error_without_known_description(self) -> None:
        payload = decode_provider_error({"error": "invalid_grant", "error_description": "Bad grant"})
        assert payload.kind == "structured"
        assert payload.code == "invalid_grant"
        assert payload.message == "Bad grant"


# ── Heuristic fallback ──────────────────────────────────────────────


class TestHeuristic:
    """Free text is matched against known phrases."""

    def test_plain_text(self) -> None:
        payload = decode_provider_error("Invalid login credentials")
        assert payload.kind == "heuristic"
        assert payload.code == "invalid_credentials"

    def test_description_beats_coarse_oauth_error(self) -> None:
        payload = decode_provider_error(
            {"error": "invalid_grant", "error_description": "Invalid Refresh Token: Refresh Token Not Found"}
        )
        assert payload.kind == "heuristic"
        assert payload.code == "refresh_token_not_found"

    def test_exception_object(self) -> None:
        payload = decode_provider_error(RuntimeError("User already registered"))
        assert payload.kind == "heuristic"
        assert payload.code == "user_already_exists"

    def test_malformed_json_falls_back_to_text(self) -> None:
        payload = decode_provider_error("{not json, email not confirmed")
        assert payload.code == "email_not_confirmed"

    def test_rotated_refresh_token(self) -> None:
        payload = decode_provider_error("Invalid Refresh Token: Already Used")
        assert payload.code == "refresh_token_already_used"

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("Invalid TOTP code entered", "mfa_verification_failed"),
            ("MFA challenge has expired, verify against another challenge", "mfa_challenge_expired"),
        ],
    )
    def test_mfa_phrases(self, text: str, expected: str) -> None:
        assert decode_provider_error(text).code == expected

    @pytest.mark.parametrize(
        "text",
        [
            "Invalid code challenge method",
            "code_challenge is required",
            "Coupon already used",
            "Invalid code",
        ],
    )
    def test_unrelated_phrases_not_guessed(self, text: str) -> None:
        payload = decode_provider_error(text, status=400)
        assert payload.kind == "unknown"
        assert payload.code is None


# ── Unknown ─────────────────────────────────────────────────────────


class TestUnknown:
    """Nothing recognisable yields an unknown payload, never an exception."""

    @pytest.mark.parametrize("raw", [None, "", "teapot", {"foo": "bar"}, 42, ["x"]])
    def test_unknown_shapes(self, raw: object) -> None:
        payload = decode_provider_error(raw, status=500)
        assert payload.kind == "unknown"
        assert payload.code is None
        assert payload.status == 500
        assert payload.message

    def test_prose_in_code_field_is_not_a_code(self) -> None:
        payload = decode_provider_error({"code": "Something Broke"})
        assert payload.kind == "unknown"


class TestFriendlyMessage:
    """friendly_message uses the fixed table."""

    def test_known_code(self) -> None:
        assert friendly_message("invalid_credentials") == FRIENDLY_MESSAGES["invalid_credentials"]

    def test_unknown_code_appends_raw_code(self) -> None:
        message = friendly_message("brand_new_code")
        assert message.startswith(GENERIC_MESSAGE)
        assert "brand_new_code" in message

    def test_no_code(self) -> None:
        assert friendly_message(None) == GENERIC_MESSAGE

    def test_payload_property(self) -> None:
        payload = decode_provider_error({"error_code": "weak_password", "msg": "too short"})
        assert payload.friendly_message == FRIENDLY_MESSAGES["weak_password"]
