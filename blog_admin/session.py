"""
Session store
Owns the authenticated identity: token, refresh token and user. Login,
logout, token refresh and forced expiry are the only transitions; credentials
are mirrored to the credential store so a session survives a restart.
"""

import asyncio
import logging
from dataclasses import replace
from enum import Enum
from typing import Callable, List, Optional

from .cache import QueryCache
from .errors import ApiError, AuthError
from .guard import Navigator
from .models import Session, User
from .notifier import Notifier
from .queries import PROFILE_KEY, STALE_TIMES
from .services import AuthService
from .storage import CredentialStore

logger = logging.getLogger(__name__)


class SessionState(Enum):
    UNAUTHENTICATED = 'unauthenticated'
    AUTHENTICATING = 'authenticating'
    AUTHENTICATED = 'authenticated'


class SessionStore:
    """Authentication state machine"""

    def __init__(self, auth_service: AuthService, storage: CredentialStore, cache: QueryCache,
                 notifier: Notifier, navigator: Optional[Navigator] = None):
        self.auth = auth_service
        self.storage = storage
        self.cache = cache
        self.notifier = notifier
        self.navigator = navigator
        self._state = SessionState.UNAUTHENTICATED
        self._session: Optional[Session] = None
        self._revalidation: Optional[asyncio.Task] = None
        self._listeners: List[Callable[[SessionState], None]] = []

    # -- accessors -----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def token(self) -> Optional[str]:
        return self._session.token if self._session else None

    @property
    def user(self) -> Optional[User]:
        return self._session.user if self._session else None

    @property
    def is_authenticated(self) -> bool:
        return self._state is SessionState.AUTHENTICATED and bool(self.token)

    def subscribe(self, listener: Callable[[SessionState], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: SessionState):
        if state is self._state:
            return
        logger.info(f"Session state: {self._state.value} -> {state.value}")
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Session listener failed: {e}")

    # -- transitions ---------------------------------------------------------

    async def initialize(self) -> bool:
        """Restore a persisted session, revalidating the profile in the background"""
        session = await self.storage.load()
        if session is None:
            logger.info("No persisted session")
            self._set_state(SessionState.UNAUTHENTICATED)
            return False

        logger.info(f"Restored session for {session.username or 'unknown user'}")
        self._session = session
        self.cache.set_data(PROFILE_KEY, session.user, STALE_TIMES[('auth', 'profile')])
        self._set_state(SessionState.AUTHENTICATED)
        self._revalidation = asyncio.ensure_future(self._revalidate())
        return True

    async def _revalidate(self):
        try:
            user = await self.cache.refetch(PROFILE_KEY, self.auth.get_profile, STALE_TIMES[('auth', 'profile')])
        except AuthError:
            # The HTTP client's unauthorized hook has already ended the session
            logger.warning("Persisted session was rejected by the server")
            return
        except ApiError as e:
            logger.warning(f"Profile revalidation failed, keeping session: {e.message}")
            return

        if self._session is None:
            return
        self._session = replace(self._session, user=user, user_id=user.id or self._session.user_id,
                                username=user.username or self._session.username,
                                role=user.role or self._session.role)
        await self.storage.save(self._session)
        logger.debug(f"Profile revalidated for {self._session.username}")

    async def wait_revalidated(self):
        """Await the startup profile revalidation, if one is running"""
        if self._revalidation is not None and not self._revalidation.done():
            await asyncio.gather(self._revalidation, return_exceptions=True)

    async def login(self, username: str, password: str, remember_me: bool = False) -> Session:
        self._set_state(SessionState.AUTHENTICATING)
        try:
            session = await self.auth.login(username, password, remember_me)
        except (Exception, asyncio.CancelledError):
            # An earlier session outlives a failed re-login unless the 401 hook ended it
            self._set_state(SessionState.AUTHENTICATED if self._session is not None
                            else SessionState.UNAUTHENTICATED)
            raise

        await self._establish(session)
        self.notifier.success("Login successful")
        return session

    async def _establish(self, session: Session):
        self._session = session
        await self.storage.save(session)
        self.cache.set_data(PROFILE_KEY, session.user, STALE_TIMES[('auth', 'profile')])
        self._set_state(SessionState.AUTHENTICATED)
        logger.info(f"Authenticated as {session.username} ({getattr(session.role, 'value', session.role)})")

    async def logout(self):
        """Tell the server if possible, then clear everything locally"""
        previous = self._session
        refresh_token = previous.refresh_token if previous else None
        if refresh_token:
            try:
                await self.auth.logout(refresh_token)
            except ApiError as e:
                logger.warning(f"Server logout failed, clearing local session anyway: {e.message}")

        if previous is None or self._session is not None:
            await self._terminate()
        logger.info("Logged out")

    async def refresh(self) -> Session:
        """Exchange the refresh token; any failure ends the session"""
        current = self._session
        try:
            if current is None or not current.refresh_token:
                raise AuthError("No refresh token available")
            refreshed = await self.auth.refresh(current.refresh_token)
        except Exception as e:
            logger.warning(f"Token refresh failed, ending session: {getattr(e, 'message', e)}")
            # A 401 has already ended it through the client's unauthorized hook
            if self._session is not None:
                await self._terminate()
            raise

        # Refresh responses may omit the user or a rotated refresh token
        if not refreshed.user.id and current.user is not None:
            refreshed = replace(refreshed, user=current.user, user_id=current.user_id,
                                username=current.username, role=current.role)
        if not refreshed.refresh_token:
            refreshed = replace(refreshed, refresh_token=current.refresh_token)

        await self._establish(refreshed)
        return refreshed

    async def expire(self):
        """Forced termination after a 401; repeated calls do nothing"""
        if self._session is None:
            return
        logger.warning(f"Session expired for {self._session.username}")
        await self._terminate()

    async def _terminate(self):
        self._session = None
        self.cache.clear()
        self._set_state(SessionState.UNAUTHENTICATED)
        if self.navigator is not None:
            self.navigator.redirect_to_login()
        await self.storage.clear()

        if self._revalidation is not None and self._revalidation is not asyncio.current_task():
            self._revalidation.cancel()
        self._revalidation = None

    async def close(self):
        if self._revalidation is not None and not self._revalidation.done():
            self._revalidation.cancel()
            await asyncio.gather(self._revalidation, return_exceptions=True)
        self._revalidation = None
