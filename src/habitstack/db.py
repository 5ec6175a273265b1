# src/habitstack/db.py
import logging
from datetime import date
from typing import List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from habitstack.errors import RemoteError
from habitstack.models import Completion, Habit, HabitStack, Profile, User, utc_now

logger = logging.getLogger(__name__)

PROFILES = "profiles"
STACKS = "habit_stacks"
HABITS = "habits"
COMPLETIONS = "completions"


class SupabaseGateway:
    """Typed access to the four HabitStack tables.

    Every backend failure comes out as ``RemoteError``; nothing is retried.
    """

    def __init__(self, client: Client):
        self.client = client

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except (APIError, httpx.HTTPError) as e:
            message = getattr(e, "message", None) or str(e)
            logger.error("Supabase error while trying to %s: %s", action, message)
            raise RemoteError(f"Failed to {action}: {message}", e) from e

    def _single(self, query, action: str) -> dict:
        resp = self._execute(query, action)
        if not resp.data:
            raise RemoteError(f"Failed to {action}: no row returned")
        return resp.data[0]

    # -------------------------------
    # PROFILES
    # -------------------------------
    def get_profile(self, user_id: str) -> Optional[Profile]:
        resp = self._execute(
            self.client.table(PROFILES).select("*").eq("id", user_id).limit(1),
            "load profile",
        )
        return Profile.model_validate(resp.data[0]) if resp.data else None

    def create_profile(self, user: User) -> Profile:
        now = utc_now().isoformat()
        row = self._single(
            self.client.table(PROFILES).insert({
                "id": user.id,
                "email": user.email,
                "created_at": now,
                "updated_at": now,
            }),
            "create profile",
        )
        return Profile.model_validate(row)

    def ensure_profile(self, user: User) -> Profile:
        """Return the user's profile, creating it on first sign-in."""
        profile = self.get_profile(user.id)
        if profile is None:
            logger.info("Creating profile for user %s", user.id)
            profile = self.create_profile(user)
        return profile

    # -------------------------------
    # HABIT STACKS
    # -------------------------------
    def list_stacks(self, user_id: Optional[str] = None) -> List[HabitStack]:
        query = self.client.table(STACKS).select("*")
        if user_id:
            query = query.eq("user_id", user_id)
        resp = self._execute(query.order("created_at", desc=False), "load habit stacks")
        return [HabitStack.model_validate(row) for row in resp.data]

    def create_stack(self, stack: HabitStack) -> HabitStack:
        row = self._single(self.client.table(STACKS).insert(stack.to_row()), "create habit stack")
        return HabitStack.model_validate(row)

    def update_stack(self, stack_id: str, fields: dict) -> HabitStack:
        row = self._single(
            self.client.table(STACKS).update(fields).eq("id", stack_id),
            "update habit stack",
        )
        return HabitStack.model_validate(row)

    def delete_stack(self, stack_id: str) -> bool:
        self._execute(self.client.table(STACKS).delete().eq("id", stack_id), "delete habit stack")
        return True

    # -------------------------------
    # HABITS
    # -------------------------------
    def list_habits(self, stack_id: Optional[str] = None, user_id: Optional[str] = None) -> List[Habit]:
        query = self.client.table(HABITS).select("*")
        if stack_id:
            query = query.eq("stack_id", stack_id)
        if user_id:
            query = query.eq("user_id", user_id)
        resp = self._execute(query.order("created_at", desc=False), "load habits")
        return [Habit.model_validate(row) for row in resp.data]

    def create_habit(self, habit: Habit) -> Habit:
        row = self._single(self.client.table(HABITS).insert(habit.to_row()), "create habit")
        return Habit.model_validate(row)

    def update_habit(self, habit_id: str, fields: dict) -> Habit:
        row = self._single(
            self.client.table(HABITS).update(fields).eq("id", habit_id),
            "update habit",
        )
        return Habit.model_validate(row)

    def delete_habit(self, habit_id: str) -> bool:
        self._execute(self.client.table(HABITS).delete().eq("id", habit_id), "delete habit")
        return True

    # -------------------------------
    # COMPLETIONS
    # -------------------------------
    def list_completions(self, user_id: Optional[str], start: date, end: date,
                         habit_id: Optional[str] = None) -> List[Completion]:
        query = self.client.table(COMPLETIONS).select("*")
        if user_id:
            query = query.eq("user_id", user_id)
        if habit_id:
            query = query.eq("habit_id", habit_id)
        query = query.gte("completed_date", start.isoformat()).lte("completed_date", end.isoformat())
        resp = self._execute(query, "load completions")
        return [Completion.model_validate(row) for row in resp.data]

    def create_completion(self, habit_id: str, day: date, user_id: Optional[str] = None) -> Completion:
        payload = {"habit_id": habit_id, "completed_date": day.isoformat()}
        if user_id:
            payload["user_id"] = user_id
        row = self._single(self.client.table(COMPLETIONS).insert(payload), "create completion")
        return Completion.model_validate(row)

    def toggle_completion(self, habit_id: str, day: date, user_id: Optional[str] = None) -> bool:
        """Flip the completion for (habit, day) and return the new state.

        The conditional delete reports whether a record existed; the insert
        path relies on the unique (habit_id, completed_date) constraint, so
        two racing toggles can never leave duplicate records.
        """
        deleted = self._execute(
            self.client.table(COMPLETIONS).delete()
            .eq("habit_id", habit_id)
            .eq("completed_date", day.isoformat()),
            "toggle completion",
        )
        if deleted.data:
            return False

        payload = {"habit_id": habit_id, "completed_date": day.isoformat()}
        if user_id:
            payload["user_id"] = user_id
        self._execute(
            self.client.table(COMPLETIONS).upsert(
                payload, on_conflict="habit_id,completed_date", ignore_duplicates=True
            ),
            "toggle completion",
        )
        return True
