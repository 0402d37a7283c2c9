"""Account flows built on single-use tokens: registration, email
verification, password reset and password change."""
import logging

from authcore.config import Settings
from authcore.errors import AuthError, ErrorKind
from authcore.security import MAX_PASSWORD_BYTES, get_password_hash, password_fits_bcrypt, verify_password
from authcore.services.credentials import Credential, SqlCredentialStore
from authcore.services.notifications import NotificationSender
from authcore.services.signer import PASSWORD_RESET, VERIFICATION
from authcore.services.single_use import SingleUseTokenService
from authcore.services.token_service import TokenService

logger = logging.getLogger(__name__)


class AccountService:
    """Compose the token services with the credential store and mailer.

    Requests keyed by email (resend verification, forgot password) return
    quietly for unknown accounts so they cannot be used to probe for them.
    """

    def __init__(
        self,
        settings: Settings,
        credential_store: SqlCredentialStore,
        single_use: SingleUseTokenService,
        token_service: TokenService,
        notifier: NotificationSender,
    ):
        self.settings = settings
        self.credential_store = credential_store
        self.single_use = single_use
        self.token_service = token_service
        self.notifier = notifier

    def register(
        self,
        username: str,
        email: str,
        password: str,
        display_name: str | None = None,
    ) -> Credential:
        """Create an unverified account and send its verification email."""
        self._check_new_password(password)
        credential = self.credential_store.create_user(
            username=username,
            email=email,
            password_hash=self._hash(password),
            display_name=display_name,
        )
        logger.info(f"Registered user {credential.id}")
        self._send(credential, VERIFICATION)
        return credential

    def resend_verification(self, email: str) -> None:
        credential = self.credential_store.find_by_identifier(email)
        if credential is None or credential.is_email_verified:
            return
        self.single_use.ensure_can_issue(credential.id, VERIFICATION)
        self._send(credential, VERIFICATION)

    def verify_email(self, token: str, password: str | None = None) -> Credential:
        """Redeem a verification token, optionally setting a password too.

        The password is only taken while the account has none or is still
        unverified, so a replayed verification link cannot overwrite the
        password of an account in use. Setting it revokes every session.
        """
        if password:
            self._check_new_password(password)
        claims = self.single_use.redeem(token, VERIFICATION)
        credential = self.credential_store.find_by_id(claims.subject_id)
        if credential is None:
            raise AuthError(ErrorKind.NOT_FOUND, f"User {claims.subject_id} no longer exists")

        if password:
            if credential.is_email_verified and credential.password_hash:
                logger.warning(f"Ignored password in verification of already verified user {credential.id}")
            else:
                self.credential_store.update_password_hash(credential.id, self._hash(password))
                self.token_service.revoke_all(credential.id, reason="password_set")
        if not credential.is_email_verified:
            self.credential_store.mark_email_verified(credential.id)
            logger.info(f"Verified email for user {credential.id}")
        return self.credential_store.find_by_id(credential.id)

    def request_password_reset(self, email: str) -> None:
        credential = self.credential_store.find_by_identifier(email)
        if credential is None or not credential.is_email_verified:
            return
        self.single_use.ensure_can_issue(credential.id, PASSWORD_RESET)
        self._send(credential, PASSWORD_RESET)

    def reset_password(self, token: str, new_password: str) -> int:
        """Set a new password from a reset token; every session is revoked."""
        # Before redeeming, so a rejected password does not spend the token.
        self._check_new_password(new_password)
        claims = self.single_use.redeem(token, PASSWORD_RESET)
        if self.credential_store.find_by_id(claims.subject_id) is None:
            raise AuthError(ErrorKind.NOT_FOUND, f"User {claims.subject_id} no longer exists")

        self.credential_store.update_password_hash(claims.subject_id, self._hash(new_password))
        revoked = self.token_service.revoke_all(claims.subject_id, reason="password_reset")
        logger.info(f"Password reset for user {claims.subject_id}, {revoked} session(s) revoked")
        return revoked

    def change_password(self, user_id: str, current_password: str, new_password: str) -> int:
        self._check_new_password(new_password)
        credential = self.credential_store.find_by_id(user_id)
        if (
            credential is None
            or not credential.password_hash
            or not verify_password(current_password, credential.password_hash)
        ):
            raise AuthError(ErrorKind.INVALID_CREDENTIALS, f"Current password check failed for {user_id}")

        self.credential_store.update_password_hash(user_id, self._hash(new_password))
        return self.token_service.revoke_all(user_id, reason="password_change")

    @staticmethod
    def _check_new_password(password: str) -> None:
        if not password_fits_bcrypt(password):
            raise AuthError(ErrorKind.INVALID_PASSWORD, f"Password exceeds {MAX_PASSWORD_BYTES} bytes")

    def _hash(self, password: str) -> str:
        return get_password_hash(password, rounds=self.settings.bcrypt_rounds)

    def _send(self, credential: Credential, token_type: str) -> str:
        token = self.single_use.issue(credential.id, credential.email, token_type)
        if not self.notifier.send(token_type, credential.email, token, credential.display_name):
            logger.warning(f"{token_type} email for user {credential.id} was not delivered")
        return token
