# src/habitstack/backends.py
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional, Set

from habitstack import config
from habitstack.db import SupabaseGateway
from habitstack.local_store import STACKS_KEY, LocalStore, read_completed_today, write_completed_today
from habitstack.logic import compute_streak, streaks_by_habit
from habitstack.models import Completion, Habit, HabitStack, User

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    """Everything a backend hands the session when it (re)loads."""
    stacks: List[HabitStack] = field(default_factory=list)
    habits: List[Habit] = field(default_factory=list)
    completed: Set[str] = field(default_factory=set)


class PersistenceBackend:
    """Common CRUD + toggle contract behind which local and remote storage sit."""

    mode = ""

    def load(self, today: date) -> Snapshot:
        raise NotImplementedError

    def create_stack(self, stack: HabitStack) -> HabitStack:
        raise NotImplementedError

    def update_stack(self, stack: HabitStack) -> HabitStack:
        raise NotImplementedError

    def delete_stack(self, stack_id: str) -> None:
        raise NotImplementedError

    def create_habit(self, habit: Habit) -> Habit:
        raise NotImplementedError

    def update_habit(self, habit: Habit) -> Habit:
        raise NotImplementedError

    def delete_habit(self, habit_id: str) -> None:
        raise NotImplementedError

    def toggle_completion(self, habit_id: str, day: date, currently_completed: bool) -> bool:
        raise NotImplementedError

    def current_streak(self, habit_id: str, today: date) -> Optional[int]:
        """Streak derived from history, or None when the backend keeps none."""
        return None

    def completions_between(self, start: date, end: date) -> Optional[List[Completion]]:
        """Completion records dated within [start, end], or None without history."""
        return None

    def persist(self, stacks: List[HabitStack], completed: Set[str]) -> None:
        """Flush the whole state after a mutation; only the local backend needs it."""


# -------------------------------
# LOCAL STORE
# -------------------------------
class LocalBackend(PersistenceBackend):
    mode = "local"

    def __init__(self, store: LocalStore):
        self.store = store

    def load(self, today: date) -> Snapshot:
        snapshot = Snapshot(completed=read_completed_today(self.store, today))
        for raw in self.store.get(STACKS_KEY) or []:
            try:
                stack = HabitStack.model_validate(raw)
            except ValueError as e:
                logger.error("Skipping unreadable stored stack: %s", e)
                continue
            habits = [h.model_copy(update={"stack_id": stack.id}) for h in stack.habits]
            snapshot.stacks.append(stack.model_copy(update={"habits": []}))
            snapshot.habits.extend(habits)
        return snapshot

    def create_stack(self, stack: HabitStack) -> HabitStack:
        return stack.model_copy(update={"id": f"stack-{uuid.uuid4().hex}", "habits": []})

    def update_stack(self, stack: HabitStack) -> HabitStack:
        return stack.model_copy(update={"habits": []})

    def delete_stack(self, stack_id: str) -> None:
        pass

    def create_habit(self, habit: Habit) -> Habit:
        return habit.model_copy(update={"id": f"habit-{uuid.uuid4().hex}"})

    def update_habit(self, habit: Habit) -> Habit:
        return habit

    def delete_habit(self, habit_id: str) -> None:
        pass

    def toggle_completion(self, habit_id: str, day: date, currently_completed: bool) -> bool:
        return not currently_completed

    def persist(self, stacks: List[HabitStack], completed: Set[str]) -> None:
        if not self.store.available:
            logger.debug("Local store unavailable, state kept in memory only")
            return
        self.store.set(STACKS_KEY, [s.model_dump(mode="json", by_alias=True) for s in stacks])
        write_completed_today(self.store, completed)


# -------------------------------
# SUPABASE
# -------------------------------
class RemoteBackend(PersistenceBackend):
    mode = "remote"

    def __init__(self, gateway: SupabaseGateway, user: User,
                 lookback_days: int = config.STREAK_LOOKBACK_DAYS):
        self.gateway = gateway
        self.user = user
        self.lookback_days = lookback_days

    def load(self, today: date) -> Snapshot:
        self.gateway.ensure_profile(self.user)

        stacks = self.gateway.list_stacks(self.user.id)
        if not stacks:
            logger.info("No stacks for user %s, creating the default stack", self.user.id)
            stacks = [self.gateway.create_stack(HabitStack(
                name=config.DEFAULT_STACK_NAME,
                description=config.DEFAULT_STACK_DESCRIPTION,
                user_id=self.user.id,
            ))]

        habits = self.gateway.list_habits(user_id=self.user.id)
        completions = self.gateway.list_completions(
            self.user.id, today - timedelta(days=self.lookback_days), today
        )
        streaks = streaks_by_habit(completions, today)
        habits = [h.model_copy(update={"streak": streaks.get(h.id, 0)}) for h in habits]

        return Snapshot(
            stacks=stacks,
            habits=habits,
            completed={c.habit_id for c in completions if c.completed_date == today},
        )

    def create_stack(self, stack: HabitStack) -> HabitStack:
        return self.gateway.create_stack(stack.model_copy(update={"user_id": self.user.id}))

    def update_stack(self, stack: HabitStack) -> HabitStack:
        fields = stack.model_dump(mode="json", include={"name", "description"})
        return self.gateway.update_stack(stack.id, fields)

    def delete_stack(self, stack_id: str) -> None:
        self.gateway.delete_stack(stack_id)

    def create_habit(self, habit: Habit) -> Habit:
        return self.gateway.create_habit(habit.model_copy(update={"user_id": self.user.id}))

    def update_habit(self, habit: Habit) -> Habit:
        return self.gateway.update_habit(habit.id, habit.update_fields())

    def delete_habit(self, habit_id: str) -> None:
        self.gateway.delete_habit(habit_id)

    def toggle_completion(self, habit_id: str, day: date, currently_completed: bool) -> bool:
        return self.gateway.toggle_completion(habit_id, day, self.user.id)

    def current_streak(self, habit_id: str, today: date) -> Optional[int]:
        completions = self.gateway.list_completions(
            self.user.id, today - timedelta(days=self.lookback_days), today, habit_id=habit_id
        )
        return compute_streak((c.completed_date for c in completions), today)

    def completions_between(self, start: date, end: date) -> Optional[List[Completion]]:
        return self.gateway.list_completions(self.user.id, start, end)
