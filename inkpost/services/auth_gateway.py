# inkpost/services/auth_gateway.py
"""
Authentication subsystem: credential storage, session issuance and
auth-state change notifications.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from inkpost.core.auth import create_token, decode_token, get_password_hash, verify_password
from inkpost.core.exceptions import AuthApiError, AuthenticationError, InvalidCredentialsError
from inkpost.core.formatting import is_strong_password, is_valid_email
from inkpost.core.token_manager import (
    InMemoryTokenBlacklist,
    TokenMetadata,
    generate_session_id,
)
from inkpost.models.user import AuthIdentity, Profile, utcnow
from inkpost.schemas.auth import AuthSession, AuthUser, TokenData
from inkpost.services.event_bus import EventBus, EventType

logger = logging.getLogger(__name__)


class AuthGateway:
    def __init__(
        self,
        engine: Engine,
        events: EventBus,
        secret_key: str,
        algorithm: str = "HS256",
        access_token_expire_minutes: int = 24 * 60,
        refresh_token_expire_days: int = 30,
    ):
        self.engine = engine
        self.events = events
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_ttl = timedelta(minutes=access_token_expire_minutes)
        self.refresh_ttl = timedelta(days=refresh_token_expire_days)
        self.blacklist = InMemoryTokenBlacklist()

    # ============ Helpers ============

    def _build_user(self, db: Session, identity: AuthIdentity) -> AuthUser:
        metadata = dict(identity.user_metadata or {})
        profile = db.get(Profile, identity.id)
        if profile:
            metadata["username"] = profile.username
            metadata["avatar_url"] = profile.avatar_url
        return AuthUser(
            id=identity.id,
            email=identity.email,
            user_metadata=metadata,
            last_sign_in_at=identity.last_sign_in_at,
            created_at=identity.created_at,
        )

    def _issue_token(self, identity: AuthIdentity, session_id: str, token_type: str) -> tuple[str, datetime]:
        ttl = self.access_ttl if token_type == "access" else self.refresh_ttl
        token, jti, expires_at = create_token(
            {"sub": identity.id, "email": identity.email, "sid": session_id},
            token_type,
            ttl,
            self.secret_key,
            self.algorithm,
        )
        self.blacklist.store_token_metadata(TokenMetadata(
            jti=jti,
            user_id=identity.id,
            session_id=session_id,
            issued_at=datetime.now(timezone.utc),
            expires_at=expires_at,
            token_type=token_type,
        ))
        return token, expires_at

    def _issue_session(self, db: Session, identity: AuthIdentity, session_id: Optional[str] = None) -> AuthSession:
        session_id = session_id or generate_session_id()
        access_token, expires_at = self._issue_token(identity, session_id, "access")
        refresh_token, _ = self._issue_token(identity, session_id, "refresh")
        return AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_ttl.total_seconds()),
            expires_at=expires_at,
            session_id=session_id,
            user=self._build_user(db, identity),
        )

    def verify(self, token: Optional[str], token_type: str = "access") -> Optional[TokenData]:
        """Decode a token and check it has not been revoked."""
        if not token:
            return None
        token_data = decode_token(token, token_type, self.secret_key, self.algorithm)
        if token_data is None:
            return None
        if token_data.jti and self.blacklist.is_blacklisted(token_data.jti):
            return None
        return token_data

    def _require_identity(self, db: Session, access_token: Optional[str]) -> AuthIdentity:
        token_data = self.verify(access_token)
        identity = db.get(AuthIdentity, token_data.user_id) if token_data else None
        if identity is None:
            raise AuthenticationError()
        return identity

    async def _emit(self, event_type: EventType, user_id: int, session: Optional[AuthSession] = None,
                    user: Optional[AuthUser] = None, session_id: Optional[str] = None):
        await self.events.publish(
            event_type,
            {
                "session": session,
                "user": user or (session.user if session else None),
                "session_id": session_id or (session.session_id if session else None),
            },
            user_id=user_id,
        )

    # ============ Registration & sign-in ============

    async def sign_up(self, email: str, password: str, user_metadata: Optional[Dict[str, Any]] = None) -> AuthUser:
        """
        Register a new identity and provision its profile.

        The profile username comes from `user_metadata["username"]`, falling
        back to the local part of the email address.
        """
        if not is_valid_email(email):
            raise AuthApiError("Unable to validate email address: invalid format")
        if not is_strong_password(password):
            raise AuthApiError("Password should be at least 6 characters")

        metadata = dict(user_metadata or {})
        username = metadata.get("username") or email.split("@")[0]

        with Session(self.engine) as db:
            existing = db.exec(select(AuthIdentity).where(AuthIdentity.email == email)).first()
            if existing:
                raise AuthApiError("User already registered")

            identity = AuthIdentity(
                email=email,
                password_hash=get_password_hash(password),
                user_metadata=metadata,
            )
            db.add(identity)
            try:
                db.flush()
                db.add(Profile(id=identity.id, username=username, email=email))
                db.commit()
            except IntegrityError as e:
                db.rollback()
                logger.error(f"Failed to register {email}: {e}")
                raise AuthApiError("Database error saving new user") from e

            db.refresh(identity)
            logger.info(f"Registered identity {identity.id} ({username})")
            return self._build_user(db, identity)

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        self.blacklist.cleanup_expired()
        with Session(self.engine) as db:
            identity = db.exec(select(AuthIdentity).where(AuthIdentity.email == email)).first()
            if identity is None or not verify_password(password, identity.password_hash):
                raise InvalidCredentialsError()

            identity.last_sign_in_at = utcnow()
            db.add(identity)
            db.commit()
            db.refresh(identity)
            session = self._issue_session(db, identity)

        await self._emit(EventType.SIGNED_IN, identity.id, session)
        return session

    async def reauthenticate(self, access_token: Optional[str], password: str) -> None:
        """Check `password` against the identity behind `access_token` without issuing a session."""
        with Session(self.engine) as db:
            identity = self._require_identity(db, access_token)
            if not verify_password(password, identity.password_hash):
                raise InvalidCredentialsError()

    # ============ Sessions ============

    async def get_session(self, access_token: Optional[str], refresh_token: Optional[str] = None) -> Optional[AuthSession]:
        """
        Resolve the persisted token pair into a session.

        An expired or revoked access token is renewed with the refresh token
        when one is available; otherwise there is no session.
        """
        token_data = self.verify(access_token)
        if token_data is None:
            if refresh_token and self.verify(refresh_token, "refresh"):
                return await self.refresh_session(refresh_token)
            return None

        with Session(self.engine) as db:
            identity = db.get(AuthIdentity, token_data.user_id)
            if identity is None:
                return None
            metadata = self.blacklist.get_token_metadata(token_data.jti) if token_data.jti else None
            expires_at = metadata.expires_at if metadata else datetime.now(timezone.utc) + self.access_ttl
            return AuthSession(
                access_token=access_token,
                refresh_token=refresh_token or "",
                expires_in=max(int((expires_at - datetime.now(timezone.utc)).total_seconds()), 0),
                expires_at=expires_at,
                session_id=token_data.session_id or "",
                user=self._build_user(db, identity),
            )

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        """Rotate the token pair of a session; the old refresh token stops working."""
        token_data = self.verify(refresh_token, "refresh")
        if token_data is None:
            raise AuthenticationError("Invalid refresh token")

        with Session(self.engine) as db:
            identity = db.get(AuthIdentity, token_data.user_id)
            if identity is None:
                raise AuthenticationError("Invalid refresh token")
            self.blacklist.revoke_session(token_data.session_id)
            session = self._issue_session(db, identity, token_data.session_id)

        await self._emit(EventType.TOKEN_REFRESHED, identity.id, session)
        return session

    async def sign_out(self, access_token: Optional[str]) -> None:
        token_data = self.verify(access_token)
        if token_data is None:
            raise AuthenticationError("Session not found")

        revoked = self.blacklist.revoke_session(token_data.session_id)
        logger.info(f"Signed out user {token_data.user_id} ({revoked} token(s) revoked)")
        await self._emit(EventType.SIGNED_OUT, token_data.user_id, session_id=token_data.session_id)

    # ============ Users ============

    async def get_user(self, access_token: Optional[str]) -> AuthUser:
        with Session(self.engine) as db:
            return self._build_user(db, self._require_identity(db, access_token))

    async def update_user(
        self,
        access_token: Optional[str],
        password: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> AuthUser:
        """Change the password and/or merge `data` into the user metadata."""
        if password is not None and not is_strong_password(password):
            raise AuthApiError("Password should be at least 6 characters")

        with Session(self.engine) as db:
            identity = self._require_identity(db, access_token)
            if password is not None:
                identity.password_hash = get_password_hash(password)
            if data:
                identity.user_metadata = {**(identity.user_metadata or {}), **data}
            identity.updated_at = utcnow()
            db.add(identity)
            db.commit()
            db.refresh(identity)
            user = self._build_user(db, identity)

        await self._emit(EventType.USER_UPDATED, user.id, user=user)
        return user

    # ============ Notifications ============

    def on_auth_state_change(self, callback: Callable) -> Callable[[], None]:
        """
        Register `callback(event_payload)` for every auth-state change.

        Returns:
            A function that removes the subscription
        """
        for event_type in EventType:
            self.events.subscribe(event_type, callback)

        def unsubscribe():
            for event_type in EventType:
                self.events.unsubscribe(event_type, callback)

        return unsubscribe
