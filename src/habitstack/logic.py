# src/habitstack/logic.py
from datetime import date, timedelta
from math import floor
from typing import Callable, Dict, Iterable, List, Optional

from habitstack.models import Habit, HabitStack


def _percent(part: int, total: int) -> int:
    """Percentage rounded half up; 0 when there is nothing to count."""
    if total <= 0:
        return 0
    return int(floor(part * 100 / total + 0.5))


def _completed_ids(completed) -> set:
    if isinstance(completed, dict):
        return {habit_id for habit_id, done in completed.items() if done}
    return set(completed)


def _completed_in_stacks(stacks: Iterable[HabitStack], completed) -> int:
    """Completed habits that are part of a stack; stray ids never count."""
    in_stacks = {habit.id for stack in stacks for habit in stack.habits}
    return len(_completed_ids(completed) & in_stacks)


def total_habit_count(stacks: Iterable[HabitStack]) -> int:
    return sum(len(stack.habits) for stack in stacks)


def week_start(day: date) -> date:
    """Sunday on or before ``day``."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


# -------------------------------
# DAILY PROGRESS
# -------------------------------
def today_completion_percentage(stacks: List[HabitStack], completed) -> int:
    return _percent(_completed_in_stacks(stacks, completed), total_habit_count(stacks))


def today_summary(stacks: List[HabitStack], completed, today: Optional[date] = None) -> dict:
    """Summary of today's progress for the dashboard."""
    done = _completed_in_stacks(stacks, completed)
    total = total_habit_count(stacks)
    return {
        "date": (today or date.today()).isoformat(),
        "completed": done,
        "total": total,
        "percentage": _percent(done, total),
    }


# -------------------------------
# WEEKLY VISUALIZATION
# -------------------------------
def weekly_progress(stacks: List[HabitStack],
                    completed_for_range: Callable[[date, date], List[Habit]],
                    today: Optional[date] = None) -> List[dict]:
    """Per-day completion status for the current Sunday-to-Saturday week.

    ``completed_for_range`` is the state manager's range query. Days after
    today are always ``none``.
    """
    today = today or date.today()
    total = total_habit_count(stacks)
    start = week_start(today)

    days = []
    for offset in range(7):
        day = start + timedelta(days=offset)
        count = len({habit.id for habit in completed_for_range(day, day)})
        percentage = _percent(count, total)

        status = "none"
        if day <= today:
            if percentage == 100:
                status = "complete"
            elif percentage > 0:
                status = "partial"

        days.append({
            "date": day.isoformat(),
            "day_name": day.strftime("%a"),
            "day_number": day.day,
            "completed_count": count,
            "total_habits": total,
            "percentage": percentage,
            "status": status,
            "is_today": day == today,
        })
    return days


# -------------------------------
# STACK STATS
# -------------------------------
def best_performing_habit(habits: List[Habit]) -> Optional[Habit]:
    best = None
    for habit in habits:
        if best is None or habit.streak > best.streak:
            best = habit
    return best


def stack_stats(stack: HabitStack, completed) -> dict:
    habits = stack.habits
    done = _completed_ids(completed)
    best = best_performing_habit(habits)
    average = floor(sum(h.streak for h in habits) / len(habits) + 0.5) if habits else 0
    return {
        "stack_id": stack.id,
        "total_duration": sum(h.duration for h in habits),
        "average_streak": int(average),
        "completion_rate": _percent(sum(1 for h in habits if h.id in done), len(habits)),
        "best_habit": best,
    }


# -------------------------------
# STREAKS
# -------------------------------
def compute_streak(days: Iterable[date], today: Optional[date] = None) -> int:
    """Length of the run of consecutive completion days ending today or yesterday."""
    today = today or date.today()
    done = set(days)
    cursor = today if today in done else today - timedelta(days=1)
    streak = 0
    while cursor in done:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def streaks_by_habit(completions, today: Optional[date] = None) -> Dict[str, int]:
    days: Dict[str, set] = {}
    for completion in completions:
        days.setdefault(completion.habit_id, set()).add(completion.completed_date)
    return {habit_id: compute_streak(dates, today) for habit_id, dates in days.items()}


# -------------------------------
# PRODUCTIVITY
# -------------------------------
def productivity_stats(habits: List[Habit], completions, today: Optional[date] = None) -> dict:
    """Totals over a range of completion records.

    ``current_streak`` is user-level: a day counts when any habit was
    completed on it. Completions of habits not in ``habits`` are counted in
    the totals but get no per-habit entry.
    """
    completions = list(completions)
    per_habit = {habit.id: 0 for habit in habits}
    for completion in completions:
        if completion.habit_id in per_habit:
            per_habit[completion.habit_id] += 1

    active = {completion.completed_date for completion in completions}
    return {
        "total_habits": len(habits),
        "total_completions": len(completions),
        "active_days": len(active),
        "current_streak": compute_streak(active, today),
        "completions_per_habit": per_habit,
    }
