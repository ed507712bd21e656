"""Tests for AuthService - core auth orchestration."""

from datetime import timedelta
from unittest.mock import Mock
from uuid import uuid4

import psycopg2
import pytest

from auth.broker import AuthenticationOutcome, AuthRequestBroker
from auth.exceptions import (
    AlreadyClaimedError,
    InvalidOrExpiredRequestError,
    NotAuthenticatedError,
    SessionExpiredError,
    SessionRevokedError,
    UserNotFoundError,
)
from auth.profile import ProfileService
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.service import AuthService
from auth.session import SessionDenylist, SessionIssuer
from auth.types import OtpType, User
from auth.verifier import CredentialVerifier, OtpVerification, PasswordVerification
from utils.timezone import now_utc

EMAIL = "asha@iiit.ac.in"
RELYING_ORIGIN = "https://club.example.org"


def make_user(**overrides) -> User:
    now = now_utc()
    data = {"id": uuid4(), "email": EMAIL, "created_at": now, "updated_at": now}
    data.update(overrides)
    return User(**data)


@pytest.fixture
def broker():
    return Mock(spec=AuthRequestBroker)


@pytest.fixture
def verifier():
    return Mock(spec=CredentialVerifier)


@pytest.fixture
def profiles():
    return Mock(spec=ProfileService)


@pytest.fixture
def security_logger():
    return Mock(spec=SecurityLogger)


@pytest.fixture
def denylist():
    mock = Mock(spec=SessionDenylist)
    mock.is_revoked.return_value = False
    return mock


@pytest.fixture
def issuer(tokens, config):
    """Real SessionIssuer - signing is pure, nothing to mock."""
    return SessionIssuer(tokens, config)


@pytest.fixture
def auth_service(broker, verifier, issuer, profiles, security_logger, denylist):
    return AuthService(broker, verifier, issuer, profiles, security_logger, denylist=denylist)


class TestPassThrough:

    def test_start_request(self, auth_service, broker):
        auth_service.start_request(RELYING_ORIGIN, ip_address="10.0.0.1")
        broker.init.assert_called_once_with(RELYING_ORIGIN, ip_address="10.0.0.1")

    def test_check_user(self, auth_service, verifier):
        auth_service.check_user(EMAIL)
        verifier.check_user.assert_called_once_with(EMAIL)

    def test_send_otp(self, auth_service, verifier):
        auth_service.send_otp(EMAIL, request_id="r", otp_type=OtpType.PASSWORD_RESET)
        verifier.issue_otp.assert_called_once_with(
            EMAIL,
            request_id="r",
            otp_type=OtpType.PASSWORD_RESET,
            ip_address=None,
            user_agent=None,
        )


class TestSignIn:

    def test_verify_otp_issues_session(self, auth_service, verifier, issuer, security_logger):
        user_id = uuid4()
        verifier.verify_otp.return_value = OtpVerification(
            user_id=user_id, email=EMAIL, is_new_user=True, profile_completed=False
        )

        result = auth_service.verify_otp(EMAIL, "123456")

        assert result.user_id == user_id
        assert result.is_new_user is True
        assert issuer.verify_session(result.session.token).user_id == user_id
        assert security_logger.log.call_args.args[0] is SecurityEvent.SESSION_CREATED

    def test_verify_password_issues_session(self, auth_service, verifier, issuer):
        user_id = uuid4()
        verifier.verify_password.return_value = PasswordVerification(
            user_id=user_id, email=EMAIL, profile_completed=True
        )

        result = auth_service.verify_password(EMAIL, "hunter22", request_id="r")

        assert result.profile_completed is True
        assert result.is_new_user is False
        assert issuer.verify_session(result.session.token).email == EMAIL
        verifier.verify_password.assert_called_once_with(
            EMAIL, "hunter22", request_id="r", ip_address=None, user_agent=None
        )


class TestAuthenticate:

    def test_binds_session_user(self, auth_service, broker, profiles, issuer):
        user = make_user()
        claims = issuer.issue_session(user.id, user.email).claims
        profiles.get_profile.return_value = user
        outcome = AuthenticationOutcome(
            redirect_url=f"{RELYING_ORIGIN}/auth-callback?request_id=r&claim=c",
            frozen_origin=RELYING_ORIGIN,
            direct=False,
            claim_token="c",
        )
        broker.authenticate.return_value = outcome

        result = auth_service.authenticate("r", claims, user_id=user.id)

        assert result.outcome is outcome
        assert result.session.claims.user_id == user.id
        broker.authenticate.assert_called_once_with("r", user.id, ip_address=None)

    def test_user_id_omitted_uses_session(self, auth_service, broker, profiles, issuer):
        user = make_user()
        profiles.get_profile.return_value = user
        claims = issuer.issue_session(user.id, user.email).claims

        auth_service.authenticate("r", claims)

        broker.authenticate.assert_called_once_with("r", user.id, ip_address=None)

    def test_user_id_must_match_session(self, auth_service, broker, issuer):
        claims = issuer.issue_session(uuid4(), EMAIL).claims

        with pytest.raises(NotAuthenticatedError):
            auth_service.authenticate("r", claims, user_id=uuid4())
        broker.authenticate.assert_not_called()

    def test_unknown_user(self, auth_service, broker, profiles, issuer):
        profiles.get_profile.side_effect = UserNotFoundError("User not found")
        claims = issuer.issue_session(uuid4(), EMAIL).claims

        with pytest.raises(UserNotFoundError):
            auth_service.authenticate("r", claims)
        broker.authenticate.assert_not_called()

    def test_request_not_waiting(self, auth_service, broker, profiles, issuer):
        user = make_user()
        profiles.get_profile.return_value = user
        broker.authenticate.side_effect = InvalidOrExpiredRequestError("Invalid or expired session")

        with pytest.raises(InvalidOrExpiredRequestError):
            auth_service.authenticate("r", issuer.issue_session(user.id, EMAIL).claims)


class TestVerifyClaim:

    def test_returns_user_and_relying_site_session(self, auth_service, broker, profiles, issuer):
        user = make_user(username="asha", profile_completed=True)
        broker.redeem.return_value = user.id
        profiles.get_profile.return_value = user

        result = auth_service.verify_claim("r", "c", origin=RELYING_ORIGIN, ip_address="10.0.0.2")

        assert result.user == user
        claims = issuer.verify_session(result.session.token)
        assert claims.user_id == user.id
        assert claims.expires_at - claims.issued_at == timedelta(days=7)
        broker.redeem.assert_called_once_with(
            "r", "c", caller_origin=RELYING_ORIGIN, ip_address="10.0.0.2"
        )

    def test_redeem_failure_propagates(self, auth_service, broker, profiles):
        broker.redeem.side_effect = AlreadyClaimedError("Claim has already been redeemed")

        with pytest.raises(AlreadyClaimedError):
            auth_service.verify_claim("r", "c")
        profiles.get_profile.assert_not_called()

    def test_user_gone(self, auth_service, broker, profiles):
        broker.redeem.return_value = uuid4()
        profiles.get_profile.side_effect = UserNotFoundError("User not found")

        with pytest.raises(UserNotFoundError):
            auth_service.verify_claim("r", "c")

    def test_audit_failure_after_redeem_still_returns_session(
        self, auth_service, broker, profiles, issuer, security_logger
    ):
        user = make_user()
        broker.redeem.return_value = user.id
        profiles.get_profile.return_value = user
        security_logger.log.side_effect = psycopg2.OperationalError("audit insert failed")

        result = auth_service.verify_claim("r", "c", origin=RELYING_ORIGIN)

        assert result.user == user
        assert issuer.verify_session(result.session.token).user_id == user.id


class TestValidateSession:

    def test_valid(self, auth_service, issuer):
        issued = issuer.issue_session(uuid4(), EMAIL)
        assert auth_service.validate_session(issued.token) == issued.claims

    def test_invalid(self, auth_service):
        with pytest.raises(SessionExpiredError):
            auth_service.validate_session("garbage")

    def test_revoked(self, auth_service, issuer, denylist):
        issued = issuer.issue_session(uuid4(), EMAIL)
        denylist.is_revoked.return_value = True

        with pytest.raises(SessionRevokedError):
            auth_service.validate_session(issued.token)
        denylist.is_revoked.assert_called_once_with(issued.claims.jti)

    def test_without_denylist(self, broker, verifier, issuer, profiles, security_logger):
        service = AuthService(broker, verifier, issuer, profiles, security_logger)
        issued = issuer.issue_session(uuid4(), EMAIL)
        assert service.validate_session(issued.token).jti == issued.claims.jti


class TestCurrentUser:

    def test_found(self, auth_service, profiles, issuer):
        user = make_user()
        profiles.get_profile.return_value = user
        assert auth_service.current_user(issuer.issue_session(user.id, EMAIL).claims) == user

    def test_deleted_user_is_not_authenticated(self, auth_service, profiles, issuer):
        profiles.get_profile.side_effect = UserNotFoundError("User not found")
        with pytest.raises(NotAuthenticatedError):
            auth_service.current_user(issuer.issue_session(uuid4(), EMAIL).claims)


class TestProfileWrites:

    def test_complete_profile_uses_session_user(self, auth_service, profiles, issuer):
        claims = issuer.issue_session(uuid4(), EMAIL).claims

        auth_service.complete_profile(claims, "asha", "42", "2021", "CSE", password="hunter22")

        profiles.complete_profile.assert_called_once_with(
            claims.user_id, "asha", "42", "2021", "CSE", password="hunter22"
        )

    def test_complete_profile_rejects_other_user(self, auth_service, profiles, issuer):
        claims = issuer.issue_session(uuid4(), EMAIL).claims

        with pytest.raises(NotAuthenticatedError):
            auth_service.complete_profile(claims, "asha", user_id=uuid4())
        profiles.complete_profile.assert_not_called()

    def test_update_profile(self, auth_service, profiles, issuer):
        claims = issuer.issue_session(uuid4(), EMAIL).claims

        auth_service.update_profile(claims, "asha", new_password="newpass1")

        profiles.update_profile.assert_called_once_with(
            claims.user_id, "asha", None, None, None, new_password="newpass1"
        )


class TestLogout:

    def test_revokes_and_logs(self, auth_service, issuer, denylist, security_logger):
        issued = issuer.issue_session(uuid4(), EMAIL)

        auth_service.logout(issued.token, ip_address="10.0.0.1")

        denylist.revoke.assert_called_once_with(issued.claims)
        security_logger.log.assert_called_once_with(
            SecurityEvent.SESSION_REVOKED,
            email=EMAIL,
            user_id=issued.claims.user_id,
            ip_address="10.0.0.1",
            details={"jti": issued.claims.jti},
        )

    @pytest.mark.parametrize("token", [None, "", "garbage"])
    def test_invalid_token_is_noop(self, auth_service, denylist, security_logger, token):
        auth_service.logout(token)

        denylist.revoke.assert_not_called()
        security_logger.log.assert_not_called()

    def test_already_revoked_is_noop(self, auth_service, issuer, denylist):
        denylist.is_revoked.return_value = True
        auth_service.logout(issuer.issue_session(uuid4(), EMAIL).token)
        denylist.revoke.assert_not_called()
