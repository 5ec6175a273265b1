# src/habitstack/auth.py
import logging
import uuid
from typing import Callable, List, Optional

from supabase import Client

from habitstack.models import User

logger = logging.getLogger(__name__)

AuthListener = Callable[[Optional[User]], None]


class SessionAuth:
    """In-process auth provider for anonymous and development runs.

    ``sign_in_with_password`` trusts the caller; the user id is derived
    from the email so the same address always maps to the same user.
    """

    def __init__(self, user: Optional[User] = None):
        self._user = user
        self._listeners: List[AuthListener] = []

    def current_user(self) -> Optional[User]:
        return self._user

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def sign_in(self, user: User) -> User:
        self._user = user
        self._notify()
        return user

    def sign_in_with_password(self, email: str, password: str) -> User:
        user_id = str(uuid.uuid5(uuid.NAMESPACE_URL, f"mailto:{email.lower()}"))
        return self.sign_in(User(id=user_id, email=email))

    def sign_out(self) -> None:
        self._user = None
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._user)


class SupabaseAuth:
    """Auth provider backed by Supabase Auth (``client.auth``)."""

    def __init__(self, client: Client):
        self.client = client

    @staticmethod
    def _to_user(session) -> Optional[User]:
        if session is None or session.user is None:
            return None
        return User(id=str(session.user.id), email=session.user.email)

    def current_user(self) -> Optional[User]:
        return self._to_user(self.client.auth.get_session())

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        def on_change(event, session):
            logger.info("Auth state changed: %s", event)
            listener(self._to_user(session))

        subscription = self.client.auth.on_auth_state_change(on_change)
        return subscription.unsubscribe

    def sign_in_with_password(self, email: str, password: str) -> User:
        resp = self.client.auth.sign_in_with_password({"email": email, "password": password})
        return User(id=str(resp.user.id), email=resp.user.email)

    def sign_out(self) -> None:
        self.client.auth.sign_out()
