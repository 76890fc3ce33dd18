try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from app.services.validation import AuthValidator, merge_results


def _codes(result) -> list[str]:
    return [error.code for error in result.errors]


@pytest.mark.parametrize(
    ("email", "codes"),
    [
        (None, ["EMAIL_REQUIRED"]),
        (42, ["EMAIL_REQUIRED"]),
        ("missing-at.example.com", ["EMAIL_INVALID"]),
        ("user@" + "a" * 250 + ".com", ["EMAIL_INVALID", "EMAIL_TOO_LONG"]),
    ],
)
def test_email_errors(email, codes) -> None:
    result = AuthValidator.validate_email(email)
    assert result.is_valid is False
    assert _codes(result) == codes


def test_email_is_normalized() -> None:
    result = AuthValidator.validate_email("Someone@Example.COM")
    assert result.is_valid
    assert result.sanitized_data == {"email": "someone@example.com"}


def test_password_rules_accumulate() -> None:
    result = AuthValidator.validate_password("abc")
    assert _codes(result) == [
        "PASSWORD_TOO_SHORT",
        "PASSWORD_NO_UPPERCASE",
        "PASSWORD_NO_NUMBER",
    ]


def test_common_password_rejected_case_insensitively() -> None:
    result = AuthValidator.validate_password("Password123")
    assert "PASSWORD_TOO_COMMON" in _codes(result)


def test_name_is_trimmed_and_sanitized() -> None:
    result = AuthValidator.validate_name("  <b>Ada</b> onclick=x ")
    assert result.is_valid
    assert result.sanitized_data == {"name": "bAda/b x"}


@pytest.mark.parametrize(
    ("name", "code"),
    [(None, "NAME_REQUIRED"), ("   ", "NAME_REQUIRED"), (7, "NAME_INVALID_TYPE"), ("x" * 101, "NAME_TOO_LONG")],
)
def test_name_errors(name, code) -> None:
    assert _codes(AuthValidator.validate_name(name)) == [code]


def test_merge_results_keeps_order_and_data() -> None:
    merged = merge_results(
        AuthValidator.validate_email("a@b.co"),
        AuthValidator.validate_password("nope"),
        AuthValidator.validate_password_confirmation("x", "y"),
    )
    assert merged.is_valid is False
    assert _codes(merged)[-1] == "PASSWORD_MISMATCH"
    assert merged.sanitized_data["email"] == "a@b.co"


def test_error_message_is_first_error() -> None:
    result = merge_results(AuthValidator.validate_email(""), AuthValidator.validate_name(""))

    assert AuthValidator.error_message(result.errors) == result.errors[0].message
    assert AuthValidator.error_message([]) == ""
