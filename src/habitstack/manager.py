# src/habitstack/manager.py
import logging
import threading
from datetime import date
from typing import Callable, Dict, List, Optional

from habitstack.backends import LocalBackend, RemoteBackend
from habitstack.db import SupabaseGateway
from habitstack.errors import HabitStackError, RemoteError
from habitstack.local_store import LocalStore
from habitstack.migration import migrate_local_data
from habitstack.models import Habit, HabitStack, User
from habitstack.session import HabitSession

logger = logging.getLogger(__name__)


class HabitStateManager:
    """Single entry point for habit state, whichever storage is active.

    The manager follows the auth provider: every sign-in builds a new
    ``HabitSession`` on Supabase, every sign-out replaces it with a local
    one. Failures never reach the caller; they are logged and kept in
    ``error`` as a message meant for the user.

    One manager serves one user at a time. Reads and operations hold a
    re-entrant lock, since route handlers and the daily job run on
    different threads.
    """

    def __init__(self, auth, store: LocalStore, gateway: Optional[SupabaseGateway] = None,
                 clock: Callable[[], date] = date.today):
        self.auth = auth
        self.store = store
        self.gateway = gateway
        self.clock = clock
        self.user: Optional[User] = None
        self.session: Optional[HabitSession] = None
        self.is_loading = False
        self.error: Optional[str] = None
        self._lock = threading.RLock()

        self._unsubscribe = auth.subscribe(self._on_auth_change)
        self._on_auth_change(auth.current_user())

    def close(self) -> None:
        self._unsubscribe()

    @property
    def mode(self) -> str:
        return self.session.mode if self.session else "local"


    # -------------------------------
    # SESSION LIFECYCLE
    # -------------------------------
    def _on_auth_change(self, user: Optional[User]) -> None:
        with self._lock:
            self.user = user
            self.error = None

            if user is None:
                logger.info("No signed-in user, using the local store")
                self.session = HabitSession(LocalBackend(self.store), self.clock)
                return

            if self.gateway is None:
                self.session = None
                self.error = "Cloud sync is not configured. Please try again later."
                logger.error("User %s signed in but no Supabase backend is configured", user.id)
                return

            logger.info("User %s signed in, loading data from Supabase", user.id)
            self.session = HabitSession(RemoteBackend(self.gateway, user), self.clock)
            self._load("Failed to load habit data. Please try again.")

    def _load(self, message: str) -> bool:
        with self._lock:
            self.is_loading = True
            try:
                self.session.load()
                return True
            except HabitStackError as e:
                logger.error("%s (%s)", message, e)
                self.error = message
                return False
            finally:
                self.is_loading = False

    def _active(self) -> HabitSession:
        if self.session is None:
            raise RemoteError(self.error or "No active session")
        if not self.session.loaded and self.session.mode == "local":
            self.session.load()
        return self.session

    def _run(self, message: str, action, *args):
        with self._lock:
            self.error = None
            try:
                return action(self._active(), *args)
            except HabitStackError as e:
                logger.error("%s (%s)", message, e)
                self.error = message
                return None

    # -------------------------------
    # READS
    # -------------------------------
    @property
    def habits(self) -> List[Habit]:
        return self._read(lambda s: s.habits, [])

    @property
    def stacks(self) -> List[HabitStack]:
        return self._read(lambda s: s.stacks, [])

    @property
    def completed_today(self) -> Dict[str, bool]:
        return self._read(lambda s: {habit_id: True for habit_id in s.completed_today()}, {})

    def get_stack(self, stack_id: str) -> Optional[HabitStack]:
        return self._read(lambda s: s.get_stack(stack_id), None)

    def is_habit_completed(self, habit_id: str) -> bool:
        return self._read(lambda s: s.is_completed(habit_id), False)

    def is_habit_completed_on_date(self, habit_id: str, day: date) -> bool:
        """Today reads the completed set; other days need completion history.

        In local mode there is no history, so any other day reads as not done.
        """
        return self._read(lambda s: s.is_completed_on(habit_id, day), False)

    def get_completed_habits_for_range(self, start: date, end: date) -> List[Habit]:
        """Habits whose creation day falls within [start, end].

        This looks at creation dates only, not at completion records.
        """
        return self._read(lambda s: s.habits_created_between(start, end), [])

    def _read(self, getter, default):
        with self._lock:
            if self.session is None:
                return default
            try:
                return getter(self._active())
            except HabitStackError as e:
                logger.error("Error reading habit state: %s", e)
                return default

    # -------------------------------
    # OPERATIONS
    # -------------------------------
    def toggle_habit_completion(self, habit_id: str) -> Optional[bool]:
        return self._run("Failed to update habit completion. Please try again.", HabitSession.toggle, habit_id)

    def add_habit(self, habit: Habit) -> Optional[Habit]:
        return self._run("Failed to add habit. Please try again.", HabitSession.add_habit, habit)

    def update_habit(self, habit: Habit) -> Optional[Habit]:
        return self._run("Failed to update habit. Please try again.", HabitSession.update_habit, habit)

    def delete_habit(self, habit_id: str) -> Optional[bool]:
        with self._lock:
            self._run("Failed to delete habit. Please try again.", HabitSession.delete_habit, habit_id)
            return None if self.error else True

    def add_stack(self, stack: HabitStack) -> Optional[HabitStack]:
        return self._run("Failed to add stack. Please try again.", HabitSession.add_stack, stack)

    def update_stack(self, stack: HabitStack) -> Optional[HabitStack]:
        return self._run("Failed to update stack. Please try again.", HabitSession.update_stack, stack)

    def delete_stack(self, stack_id: str) -> Optional[bool]:
        with self._lock:
            self._run("Failed to delete stack. Please try again.", HabitSession.delete_stack, stack_id)
            return None if self.error else True

    def productivity_stats(self, start: date, end: date) -> Optional[dict]:
        """Totals, active days and the user-level streak over [start, end]."""
        return self._run("Failed to load productivity stats. Please try again.",
                         HabitSession.productivity_stats, start, end)

    def refresh_habits(self) -> bool:
        with self._lock:
            self.error = None
            if self.session is None:
                self.error = "No active session"
                return False
            return self._load("Failed to refresh habits. Please try again.")

    def roll_over(self) -> None:
        """Move to a new calendar day."""
        with self._lock:
            if self.session is None:
                return
            if self.session.mode == "remote":
                self.refresh_habits()
            else:
                self._run("Failed to start a new day. Please try again.", HabitSession.roll_over)

    def migrate_local_data(self) -> dict:
        """Copy the local store into the signed-in user's Supabase account."""
        with self._lock:
            if self.user is None or self.gateway is None:
                return {"success": False, "message": "Sign in to migrate your local data"}
            result = migrate_local_data(self.store, self.gateway, self.user.id, self.clock())
            if result["success"]:
                self.refresh_habits()
            return result
