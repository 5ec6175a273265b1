# src/habitstack/models.py
from datetime import date, datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_day(moment: datetime) -> date:
    """Calendar day of a timestamp in the machine's local time zone."""
    if moment.tzinfo is not None:
        moment = moment.astimezone()
    return moment.date()


# -------------------------------
# AUTH
# -------------------------------
class User(BaseModel):
    id: str
    email: Optional[str] = None


class Profile(BaseModel):
    id: str
    email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# -------------------------------
# HABITS & STACKS
# -------------------------------
UPDATABLE_HABIT_FIELDS = {"name", "description", "duration", "trigger", "streak", "stack_id"}


class Habit(BaseModel):
    """A single micro-action performed after its trigger cue."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    duration: int = 1
    trigger: str = ""
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    streak: int = Field(default=0, ge=0)
    stack_id: Optional[str] = None
    user_id: Optional[str] = None

    def created_on(self) -> date:
        return local_day(self.created_at)

    def to_row(self) -> dict:
        """Column values for an insert into the ``habits`` table."""
        return self.model_dump(mode="json", exclude={"id", "created_at"}, exclude_none=True)

    def update_fields(self) -> dict:
        """Column values for an update. Cleared fields are sent as nulls."""
        return self.model_dump(mode="json", include=UPDATABLE_HABIT_FIELDS)


class HabitStack(BaseModel):
    """An ordered chain of habits. ``habits`` is display and execution order."""

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    habits: List[Habit] = Field(default_factory=list)
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_row(self) -> dict:
        return self.model_dump(mode="json", include={"name", "description", "user_id"}, exclude_none=True)


class Completion(BaseModel):
    id: Optional[str] = None
    habit_id: str
    completed_date: date
    user_id: Optional[str] = None
