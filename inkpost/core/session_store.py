# inkpost/core/session_store.py
"""
Authentication state of one client: current user, current session and a
loading flag, kept in step with the auth subsystem.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional, Union

from inkpost.core.exceptions import (
    AuthenticationError,
    IncorrectPasswordError,
    InvalidCredentialsError,
    UsernameTakenError,
)
from inkpost.core.storage import AVATARS_BUCKET, FileUpload, validate_image_upload
from inkpost.crud.profiles import profile_crud
from inkpost.schemas.auth import AuthSession, AuthUser
from inkpost.schemas.blog import Profile as ProfileSchema, ProfileUpdate
from inkpost.services.event_bus import EventType
from inkpost.services.gateway import Gateway

logger = logging.getLogger(__name__)


class SessionStore:
    """
    Explicit auth context handed to whatever needs the current user.

    The store is the only writer of its state. Direct calls (sign-in,
    sign-out, refresh...) hold a lock; auth-change notifications that arrive
    while one is running are queued and applied once it finishes, so a
    notification can never be overwritten by the call that caused it.
    Notifications only touch the store when they concern its own user, and
    session-level ones only when they concern its own session.
    """

    def __init__(
        self,
        gateway: Gateway,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
    ):
        self.gateway = gateway
        self.user: Optional[AuthUser] = None
        self.session: Optional[AuthSession] = None
        self.loading = True

        self._access_token = access_token
        self._refresh_token = refresh_token
        self._lock = asyncio.Lock()
        self._pending_events: List[Dict[str, Any]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ============ State ============

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token if self.session else self._access_token

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    def _set(self, session: Optional[AuthSession], user: Optional[AuthUser]) -> None:
        self.session = session
        self.user = user
        if session is None:
            self._access_token = None
            self._refresh_token = None
        else:
            self._access_token = session.access_token
            self._refresh_token = session.refresh_token or self._refresh_token
            self._subscribe()

    def _subscribe(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.gateway.auth.on_auth_state_change(self._handle_auth_change)

    def close(self) -> None:
        """Stop listening to auth-state changes."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @asynccontextmanager
    async def _mutating(self):
        async with self._lock:
            try:
                yield
            finally:
                pending, self._pending_events = self._pending_events, []
                for payload in pending:
                    self._apply_event(payload)

    def _handle_auth_change(self, payload: Dict[str, Any]) -> None:
        if self._lock.locked():
            self._pending_events.append(payload)
        else:
            self._apply_event(payload)

    def _apply_event(self, payload: Dict[str, Any]) -> None:
        if self.user is None or payload.get("user_id") != self.user.id:
            return

        data = payload.get("data") or {}
        if payload.get("event_type") == EventType.USER_UPDATED.value:
            user = data.get("user")
            if user is not None:
                self.user = user
                if self.session is not None:
                    self.session = self.session.model_copy(update={"user": user})
            return

        if self.session is None or data.get("session_id") != self.session.session_id:
            return

        session = data.get("session")
        logger.debug(f"Auth state change {payload.get('event_type')} for user {self.user.id}")
        if session is None:
            self._set(None, None)
        else:
            self._set(session, session.user)

    # ============ Lifecycle ============

    async def initialize(self) -> None:
        """
        Load the current session and start following auth-state changes.

        Errors are logged, never raised; `loading` is False afterwards in
        every case.
        """
        try:
            async with self._mutating():
                session = await self.gateway.auth.get_session(self._access_token, self._refresh_token)
                self._set(session, session.user if session else None)
                self._subscribe()
        except Exception as e:
            logger.error(f"Auth initialization error: {e}")
        finally:
            self.loading = False

    # ============ Sign-in / sign-up / sign-out ============

    async def sign_in(self, identifier: str, password: str) -> AuthSession:
        """
        Sign in with an email address or a username.

        A username is first resolved to its email. Every failure (lookup
        error, unknown username, wrong password) raises the same
        InvalidCredentialsError.
        """
        email = identifier
        if "@" not in identifier:
            try:
                with self.gateway.session() as db:
                    profile = profile_crud.get_profile_by_username(db, identifier)
                    email = profile.email if profile else None
            except Exception as e:
                logger.error(f"Failed to look up user {identifier}: {e}")
                raise InvalidCredentialsError() from e

            if email is None:
                raise InvalidCredentialsError()

        async with self._mutating():
            session = await self.gateway.auth.sign_in_with_password(email, password)
            self._set(session, session.user)
        return session

    async def sign_up(self, email: str, password: str, username: str) -> AuthUser:
        """Register and sign in straight away, without an email confirmation step."""
        try:
            with self.gateway.session() as db:
                taken = profile_crud.username_exists(db, username)
        except Exception as e:
            logger.warning(f"Username check failed for {username}: {e}")
            taken = False

        if taken:
            raise UsernameTakenError(username)

        user = await self.gateway.auth.sign_up(email, password, {"username": username})

        try:
            await self.sign_in(email, password)
        except Exception as e:
            logger.error(f"Automatic sign-in after registration failed: {e}")
            raise AuthenticationError(
                "Registration succeeded but automatic sign-in failed, please sign in manually"
            ) from e

        return user

    async def sign_out(self) -> None:
        """Sign out; local state is cleared even when the remote call fails."""
        async with self._mutating():
            if self.session is None and not self._access_token:
                self._set(None, None)
                return
            try:
                await self.gateway.auth.sign_out(self.access_token)
            except Exception as e:
                logger.error(f"Sign-out failed: {e}")
                raise
            finally:
                self._set(None, None)

    # ============ Account ============

    async def update_password(self, current_password: str, new_password: str) -> bool:
        """
        Change the password after re-checking the current one.

        Raises AuthenticationError when there is no signed-in user and
        IncorrectPasswordError when `current_password` is wrong.
        """
        if self.session is None and not self._access_token:
            raise AuthenticationError()

        token = self.access_token
        await self.gateway.auth.get_user(token)

        try:
            await self.gateway.auth.reauthenticate(token, current_password)
        except InvalidCredentialsError as e:
            raise IncorrectPasswordError() from e

        await self.gateway.auth.update_user(token, password=new_password)
        return True

    async def update_profile(self, updates: Union[ProfileUpdate, Dict[str, Any]]) -> ProfileSchema:
        if self.user is None:
            raise AuthenticationError()
        if isinstance(updates, dict):
            updates = ProfileUpdate(**updates)

        with self.gateway.session() as db:
            profile = profile_crud.update_profile(db, self.user.id, updates)
            return ProfileSchema.model_validate(profile)

    async def upload_avatar(self, file: FileUpload) -> str:
        """
        Store a new avatar under `<user id>/<timestamp>.<ext>` in the avatars
        bucket, point the profile at it and reload the user.

        Returns:
            The public URL of the avatar
        """
        if self.user is None:
            raise AuthenticationError()

        validate_image_upload(file, self.gateway.settings.AVATAR_MAX_MB, "Avatar")

        storage = self.gateway.storage
        path = f"{self.user.id}/{int(time.time() * 1000)}.{file.extension}"
        await storage.upload(AVATARS_BUCKET, path, file)
        avatar_url = storage.get_public_url(AVATARS_BUCKET, path)

        await self.update_profile(ProfileUpdate(avatar_url=avatar_url))
        await self.refresh_user()
        return avatar_url

    async def refresh_user(self) -> None:
        """Reload the user from the auth subsystem; failures are logged and ignored."""
        if self.user is None:
            return

        async with self._mutating():
            try:
                user = await self.gateway.auth.get_user(self.access_token)
            except Exception as e:
                logger.error(f"Failed to refresh user: {e}")
                return

            self.user = user
            if self.session is not None:
                self.session = self.session.model_copy(update={"user": user})

    async def refresh_session(self) -> AuthSession:
        if not self._refresh_token:
            raise AuthenticationError()

        async with self._mutating():
            session = await self.gateway.auth.refresh_session(self._refresh_token)
            self._set(session, session.user)
        return session
