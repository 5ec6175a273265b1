# src/habitstack/migration.py
import logging
from datetime import date
from typing import Optional

from habitstack.db import SupabaseGateway
from habitstack.errors import HabitStackError
from habitstack.local_store import STACKS_KEY, LocalStore, read_completed_today
from habitstack.models import Habit, HabitStack

logger = logging.getLogger(__name__)


def migrate_local_data(store: LocalStore, gateway: SupabaseGateway,
                       user_id: Optional[str] = None, today: Optional[date] = None) -> dict:
    """Copy locally stored stacks, habits and today's completions to Supabase.

    One-shot and not resumable: the first failure stops the run and whatever
    was already inserted stays. Only today's completion flags exist locally,
    so completions are dated with the day the migration runs. Running it
    twice duplicates everything.
    """
    stored_stacks = store.get(STACKS_KEY)
    if not stored_stacks:
        return {"success": True, "message": "No data to migrate"}

    completed = read_completed_today(store, today)
    today = today or date.today()

    try:
        for raw in stored_stacks:
            stack = HabitStack.model_validate(raw)
            new_stack = gateway.create_stack(HabitStack(
                name=stack.name,
                description=stack.description or "",
                user_id=user_id,
            ))

            for habit in stack.habits:
                new_habit = gateway.create_habit(Habit(
                    name=habit.name,
                    description=habit.description or "",
                    trigger=habit.trigger or "",
                    duration=habit.duration,
                    stack_id=new_stack.id,
                    user_id=user_id,
                ))
                if str(habit.id) in completed:
                    gateway.create_completion(new_habit.id, today, user_id)
    except (HabitStackError, ValueError) as e:
        logger.error("Migration failed: %s", e)
        return {"success": False, "message": f"Migration failed: {e}"}

    logger.info("Migrated %d stacks to Supabase", len(stored_stacks))
    return {"success": True, "message": "Migration completed successfully"}
