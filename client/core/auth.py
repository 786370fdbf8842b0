"""Authentication session shared by the API client and the registration flow.

Holds the bearer tokens used for API calls and the authenticated user's
profile. Components that must react to identity changes (the registration
flow aborts an in-flight payment on logout) subscribe to change notifications
instead of polling.
"""

from __future__ import annotations

from collections.abc import Callable

from core.logger import get_logger
from schemas import UserProfile

logger = get_logger(__name__)

AuthListener = Callable[[UserProfile | None], None]


class AuthSession:
    """Tokens plus the current user, with change subscribers."""

    def __init__(
        self,
        *,
        user: UserProfile | None = None,
        access_token: str | None = None,
        refresh_token: str | None = None,
    ) -> None:
        self._user = user
        self.access_token = access_token
        self.refresh_token = refresh_token
        self._listeners: list[AuthListener] = []

    @property
    def user(self) -> UserProfile | None:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._user is not None and bool(self.access_token)

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register a listener for user changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def login(
        self,
        user: UserProfile,
        access_token: str,
        refresh_token: str | None = None,
    ) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        self._set_user(user)
        logger.info("auth.login", user_id=user.id)

    def update_access_token(self, access_token: str) -> None:
        """Token refresh keeps the same identity, so listeners are not notified."""
        self.access_token = access_token

    def logout(self) -> None:
        had_user = self._user is not None
        self.access_token = None
        self.refresh_token = None
        self._set_user(None)
        if had_user:
            logger.info("auth.logout")

    def _set_user(self, user: UserProfile | None) -> None:
        previous = self._user
        self._user = user

        previous_id = previous.id if previous else None
        current_id = user.id if user else None
        if previous_id == current_id:
            return

        for listener in list(self._listeners):
            listener(user)
