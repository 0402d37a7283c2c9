"""Wiring of the token services."""
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from authcore.config import Settings
from authcore.services.accounts import AccountService
from authcore.services.credentials import SqlCredentialStore
from authcore.services.events import EventDispatcher
from authcore.services.notifications import NotificationSender, SmtpNotificationSender
from authcore.services.session_store import SessionStore
from authcore.services.signer import Signer
from authcore.services.single_use import IssuedTokenStore, SingleUseTokenService
from authcore.services.token_service import TokenService
from authcore.timeutils import Clock, utcnow


@dataclass
class AuthServices:
    settings: Settings
    signer: Signer
    credentials: SqlCredentialStore
    sessions: SessionStore
    tokens: TokenService
    single_use: SingleUseTokenService
    accounts: AccountService
    dispatcher: EventDispatcher


def build_services(
    settings: Settings,
    session_factory: sessionmaker,
    notifier: NotificationSender | None = None,
    dispatcher: EventDispatcher | None = None,
    clock: Clock = utcnow,
) -> AuthServices:
    signer = Signer(settings.secret_key, settings.algorithm, clock=clock)
    credentials = SqlCredentialStore(session_factory)
    sessions = SessionStore(session_factory, clock=clock)
    dispatcher = dispatcher or EventDispatcher()
    tokens = TokenService(settings, signer, sessions, credentials, dispatcher=dispatcher, clock=clock)
    single_use = SingleUseTokenService(
        settings, signer, IssuedTokenStore(session_factory, clock=clock), clock=clock
    )
    accounts = AccountService(
        settings,
        credentials,
        single_use,
        tokens,
        notifier or SmtpNotificationSender(settings),
    )
    return AuthServices(
        settings=settings,
        signer=signer,
        credentials=credentials,
        sessions=sessions,
        tokens=tokens,
        single_use=single_use,
        accounts=accounts,
        dispatcher=dispatcher,
    )
