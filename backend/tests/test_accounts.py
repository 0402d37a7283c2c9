import pytest

from authcore.errors import AuthError, ErrorKind
from authcore.services import events
from authcore.services.container import build_services
from authcore.services.signer import PASSWORD_RESET, VERIFICATION
from authcore.services.token_service import DeviceInfo
from conftest import PASSWORD, make_settings


def _kind(callable_, *args, **kwargs) -> ErrorKind:
    with pytest.raises(AuthError) as exc_info:
        callable_(*args, **kwargs)
    return exc_info.value.kind


def test_register_then_verify_email_enables_login(services, notifier):
    user = services.accounts.register("alpha", "Alpha@Example.com", "TestPass123!", display_name="Alpha")

    assert user.email == "alpha@example.com"
    assert user.is_email_verified is False
    assert notifier.sent[-1].recipient_email == "alpha@example.com"
    assert notifier.sent[-1].display_name == "Alpha"
    assert _kind(services.tokens.login, "alpha", "TestPass123!") == ErrorKind.EMAIL_NOT_VERIFIED

    verified = services.accounts.verify_email(notifier.last_token(VERIFICATION))

    assert verified.is_email_verified is True
    assert services.tokens.login("alpha", "TestPass123!").access_token


def test_register_rejects_duplicate_username_or_email(services):
    services.accounts.register("alpha", "alpha@example.com", "TestPass123!")

    assert _kind(services.accounts.register, "alpha", "other@example.com", "TestPass123!") == ErrorKind.CONFLICT
    assert _kind(services.accounts.register, "other", "ALPHA@example.com", "TestPass123!") == ErrorKind.CONFLICT


def test_verify_email_can_set_password(services, make_user, notifier):
    make_user(password=None, verified=False)
    services.accounts.resend_verification("u1@x.com")

    services.accounts.verify_email(notifier.last_token(VERIFICATION), password="BrandNew1!")

    assert services.tokens.login("u1@x.com", "BrandNew1!").refresh_token


def test_verification_token_cannot_be_replayed(services, notifier):
    services.accounts.register("alpha", "alpha@example.com", "TestPass123!")
    token = notifier.last_token(VERIFICATION)

    services.accounts.verify_email(token)

    assert _kind(services.accounts.verify_email, token) == ErrorKind.SUPERSEDED


def test_resend_verification_is_silent_for_unknown_or_verified(services, make_user, notifier):
    make_user(verified=True)

    services.accounts.resend_verification("nobody@x.com")
    services.accounts.resend_verification("u1@x.com")

    assert notifier.sent == []


def test_resend_verification_is_rate_limited(services, notifier, clock):
    services.accounts.register("alpha", "alpha@example.com", "TestPass123!")

    assert _kind(services.accounts.resend_verification, "alpha@example.com") == ErrorKind.RATE_LIMITED

    clock.advance(seconds=60)
    services.accounts.resend_verification("alpha@example.com")
    assert len(notifier.sent) == 2


def test_password_reset_forces_relogin(services, make_user, notifier):
    user = make_user()
    web = services.tokens.login("u1@x.com", PASSWORD, DeviceInfo(user_agent="Firefox"))
    mobile = services.tokens.login("u1@x.com", PASSWORD, DeviceInfo(user_agent="iOS"))

    services.accounts.request_password_reset("u1@x.com")
    revoked = services.accounts.reset_password(notifier.last_token(PASSWORD_RESET), "N3wPassword!")

    assert revoked == 2
    for pair in (web, mobile):
        assert _kind(services.tokens.refresh, pair.refresh_token) == ErrorKind.INVALID_OR_REUSED_REFRESH_TOKEN
    assert _kind(services.tokens.login, "u1@x.com", PASSWORD) == ErrorKind.INVALID_CREDENTIALS
    assert services.tokens.login("u1@x.com", "N3wPassword!").session.user_id == user.id


def test_only_latest_reset_token_works(services, make_user, notifier, clock):
    make_user()
    services.accounts.request_password_reset("u1@x.com")
    first = notifier.last_token(PASSWORD_RESET)
    clock.advance(minutes=1)
    services.accounts.request_password_reset("u1@x.com")
    second = notifier.last_token(PASSWORD_RESET)

    assert _kind(services.accounts.reset_password, first, "N3wPassword!") == ErrorKind.SUPERSEDED
    services.accounts.reset_password(second, "N3wPassword!")
    assert _kind(services.accounts.reset_password, second, "Another1!") == ErrorKind.SUPERSEDED


def test_password_reset_request_is_silent_for_unknown_or_unverified(services, make_user, notifier):
    make_user(verified=False)

    services.accounts.request_password_reset("nobody@x.com")
    services.accounts.request_password_reset("u1@x.com")

    assert notifier.sent == []


def test_verification_token_cannot_reset_password(services, make_user, notifier):
    make_user(verified=False)
    services.accounts.resend_verification("u1@x.com")

    token = notifier.last_token(VERIFICATION)

    assert _kind(services.accounts.reset_password, token, "N3wPassword!") == ErrorKind.WRONG_TYPE


def test_change_password_checks_current_and_revokes_sessions(services, make_user):
    user = make_user()
    pair = services.tokens.login("u1@x.com", PASSWORD)

    assert _kind(services.accounts.change_password, user.id, "wrong", "N3wPassword!") == ErrorKind.INVALID_CREDENTIALS

    assert services.accounts.change_password(user.id, PASSWORD, "N3wPassword!") == 1
    assert _kind(services.tokens.refresh, pair.refresh_token) == ErrorKind.INVALID_OR_REUSED_REFRESH_TOKEN
    assert services.tokens.login("u1@x.com", "N3wPassword!").access_token


@pytest.mark.parametrize("password", ["é" * 40, "x" * 73])
def test_password_over_72_bytes_is_rejected_without_spending_reset_token(services, make_user, notifier, password):
    make_user()
    services.accounts.request_password_reset("u1@x.com")
    token = notifier.last_token(PASSWORD_RESET)

    assert _kind(services.accounts.reset_password, token, password) == ErrorKind.INVALID_PASSWORD

    services.accounts.reset_password(token, "N3wPassword!")
    assert services.tokens.login("u1@x.com", "N3wPassword!").access_token


def test_password_over_72_bytes_is_rejected_on_register_and_change(services, make_user):
    user = make_user()

    assert _kind(services.accounts.register, "alpha", "alpha@example.com", "é" * 40) == ErrorKind.INVALID_PASSWORD
    assert services.credentials.find_by_identifier("alpha") is None
    assert _kind(services.accounts.change_password, user.id, PASSWORD, "é" * 40) == ErrorKind.INVALID_PASSWORD
    assert services.tokens.login("u1@x.com", PASSWORD).access_token


def test_setting_password_on_verification_revokes_sessions(services, make_user, notifier, security_events):
    user = make_user(verified=False)
    services.accounts.resend_verification("u1@x.com")

    services.accounts.verify_email(notifier.last_token(VERIFICATION), password="BrandNew1!")

    revoked = [event for event in security_events if event.name == events.SESSIONS_REVOKED_ALL]
    assert revoked[-1].user_id == user.id
    assert revoked[-1].detail["reason"] == "password_set"
    assert _kind(services.tokens.login, "u1@x.com", PASSWORD) == ErrorKind.INVALID_CREDENTIALS
    assert services.tokens.login("u1@x.com", "BrandNew1!").access_token


def test_replayed_verification_cannot_overwrite_password(session_factory, clock, notifier):
    services = build_services(
        make_settings(single_use_reuse_restriction=False),
        session_factory,
        notifier=notifier,
        clock=clock,
    )
    services.accounts.register("alpha", "alpha@example.com", "TestPass123!")
    token = notifier.last_token(VERIFICATION)
    services.accounts.verify_email(token)
    pair = services.tokens.login("alpha", "TestPass123!", DeviceInfo(user_agent="a"))

    services.accounts.verify_email(token, password="Attacker1!")

    assert services.tokens.refresh(pair.refresh_token).access_token
    assert _kind(services.tokens.login, "alpha", "Attacker1!") == ErrorKind.INVALID_CREDENTIALS
    assert services.tokens.login("alpha", "TestPass123!").access_token
