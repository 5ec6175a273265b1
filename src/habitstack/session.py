# src/habitstack/session.py
import logging
from datetime import date
from typing import Callable, Dict, List, Optional

from habitstack.backends import PersistenceBackend
from habitstack.errors import RemoteError, ValidationError
from habitstack.logic import productivity_stats
from habitstack.models import Completion, Habit, HabitStack

logger = logging.getLogger(__name__)


class HabitSession:
    """In-memory habit state for one auth session, bound to one backend.

    Habits live in a single id-indexed store. A stack's habit list is always
    computed from that store, so there is no second copy to keep in sync.
    Every operation raises on failure and leaves state untouched when the
    backend call fails.
    """

    def __init__(self, backend: PersistenceBackend, clock: Callable[[], date] = date.today):
        self.backend = backend
        self.clock = clock
        self.loaded = False
        self._habits: Dict[str, Habit] = {}
        self._stacks: Dict[str, HabitStack] = {}
        self._completed: set = set()
        self._completed_on: Optional[date] = None

    @property
    def mode(self) -> str:
        return self.backend.mode

    def load(self) -> None:
        today = self.clock()
        snapshot = self.backend.load(today)
        self._stacks = {s.id: s.model_copy(update={"habits": []}) for s in snapshot.stacks}
        self._habits = {h.id: h for h in snapshot.habits}
        self._completed = set(snapshot.completed)
        self._completed_on = today
        self.loaded = True
        logger.info("Loaded %d stacks and %d habits (%s)", len(self._stacks), len(self._habits), self.mode)

    # -------------------------------
    # READS
    # -------------------------------
    @property
    def habits(self) -> List[Habit]:
        return list(self._habits.values())

    def habits_in_stack(self, stack_id: str) -> List[Habit]:
        return [h for h in self._habits.values() if h.stack_id == stack_id]

    @property
    def stacks(self) -> List[HabitStack]:
        return [s.model_copy(update={"habits": self.habits_in_stack(s.id)}) for s in self._stacks.values()]

    def get_stack(self, stack_id: str) -> Optional[HabitStack]:
        stack = self._stacks.get(stack_id)
        if stack is None:
            return None
        return stack.model_copy(update={"habits": self.habits_in_stack(stack_id)})

    def completed_today(self) -> set:
        if self._completed_on != self.clock():
            return set()
        return set(self._completed)

    def is_completed(self, habit_id: str) -> bool:
        return habit_id in self.completed_today()

    def habits_created_between(self, start: date, end: date) -> List[Habit]:
        return [h for h in self._habits.values() if start <= h.created_on() <= end]

    def completions_between(self, start: date, end: date) -> List[Completion]:
        """Completion records in [start, end].

        Without stored history only today's completed set is known, so that is
        all a local session can report.
        """
        records = self.backend.completions_between(start, end)
        if records is not None:
            return records
        today = self.clock()
        if not start <= today <= end:
            return []
        return [Completion(habit_id=habit_id, completed_date=today) for habit_id in sorted(self.completed_today())]

    def is_completed_on(self, habit_id: str, day: date) -> bool:
        if day == self.clock():
            return self.is_completed(habit_id)
        return any(c.habit_id == habit_id for c in self.completions_between(day, day))

    def productivity_stats(self, start: date, end: date) -> dict:
        return productivity_stats(self.habits, self.completions_between(start, end), self.clock())

    # -------------------------------
    # HABITS
    # -------------------------------
    def _check_stack(self, stack_id: Optional[str]) -> None:
        if stack_id is None:
            raise ValidationError("Habit must belong to a stack")
        if stack_id not in self._stacks:
            raise ValidationError(f"Stack {stack_id} does not exist")

    def add_habit(self, habit: Habit) -> Habit:
        if not habit.name or not habit.name.strip():
            raise ValidationError("Habit name cannot be empty")
        self._check_stack(habit.stack_id)
        created = self.backend.create_habit(habit.model_copy(update={"id": None}))
        self._habits[created.id] = created
        self._persist()
        return created

    def update_habit(self, habit: Habit) -> Habit:
        if habit.id not in self._habits:
            raise ValidationError(f"Habit {habit.id} does not exist")
        self._check_stack(habit.stack_id)
        updated = self.backend.update_habit(habit)
        self._habits[updated.id] = updated
        self._persist()
        return updated

    def delete_habit(self, habit_id: str) -> None:
        if habit_id not in self._habits:
            raise ValidationError(f"Habit {habit_id} does not exist")
        self.backend.delete_habit(habit_id)
        del self._habits[habit_id]
        self._completed.discard(habit_id)
        self._persist()

    # -------------------------------
    # STACKS
    # -------------------------------
    def add_stack(self, stack: HabitStack) -> HabitStack:
        if not stack.name or not stack.name.strip():
            raise ValidationError("Stack name cannot be empty")
        created = self.backend.create_stack(stack.model_copy(update={"id": None, "habits": []}))
        self._stacks[created.id] = created.model_copy(update={"habits": []})
        self._persist()
        return self.get_stack(created.id)

    def update_stack(self, stack: HabitStack) -> HabitStack:
        if stack.id not in self._stacks:
            raise ValidationError(f"Stack {stack.id} does not exist")
        updated = self.backend.update_stack(stack)
        self._stacks[updated.id] = updated.model_copy(update={"habits": []})
        self._persist()
        return self.get_stack(updated.id)

    def delete_stack(self, stack_id: str) -> None:
        if stack_id not in self._stacks:
            raise ValidationError(f"Stack {stack_id} does not exist")
        self.backend.delete_stack(stack_id)
        del self._stacks[stack_id]
        for habit in self.habits_in_stack(stack_id):
            del self._habits[habit.id]
            self._completed.discard(habit.id)
        self._persist()

    # -------------------------------
    # COMPLETIONS
    # -------------------------------
    def toggle(self, habit_id: str) -> bool:
        if habit_id not in self._habits:
            raise ValidationError(f"Habit {habit_id} does not exist")
        today = self.clock()
        if self._completed_on != today:
            self._completed = set()
            self._completed_on = today

        completed = self.backend.toggle_completion(habit_id, today, habit_id in self._completed)
        if completed:
            self._completed.add(habit_id)
        else:
            self._completed.discard(habit_id)

        try:
            streak = self.backend.current_streak(habit_id, today)
        except RemoteError as e:
            logger.warning("Kept stored streak for %s: %s", habit_id, e)
            streak = None
        if streak is not None:
            self._habits[habit_id] = self._habits[habit_id].model_copy(update={"streak": streak})
        self._persist()
        return completed

    def roll_over(self) -> None:
        """Start a new day: the completed-today set belongs to yesterday."""
        self._completed = set()
        self._completed_on = self.clock()
        self._persist()

    def _persist(self) -> None:
        self.backend.persist(self.stacks, self._completed)
