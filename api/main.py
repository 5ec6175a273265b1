from contextlib import asynccontextmanager
from datetime import date, datetime
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from habitstack import config, logic
from habitstack.auth import SessionAuth, SupabaseAuth
from habitstack.db import SupabaseGateway
from habitstack.local_store import LocalStore
from habitstack.logger import setup_logger
from habitstack.manager import HabitStateManager
from habitstack.models import Habit, HabitStack

logger = logging.getLogger(__name__)

_manager: Optional[HabitStateManager] = None


def build_manager() -> HabitStateManager:
    """Wire the state manager to Supabase when configured, else to the local store only."""
    store = LocalStore(config.LOCAL_STORE_PATH)
    if config.supabase_configured():
        client = config.get_client()
        return HabitStateManager(SupabaseAuth(client), store, SupabaseGateway(client))
    return HabitStateManager(SessionAuth(), store)


def get_manager() -> HabitStateManager:
    """The process-wide manager. The API serves a single user per process."""
    global _manager
    if _manager is None:
        _manager = build_manager()
    return _manager


# -------------------------------
# APScheduler Tasks
# -------------------------------
scheduler = BackgroundScheduler()


def daily_task():
    """Start a new day for the live session at 00:01."""
    try:
        get_manager().roll_over()
        logger.info("Rolled habit state over to %s", datetime.now().date().isoformat())
    except Exception as e:
        logger.error("Daily task error: %s", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logger(config.LOG_FILE, config.LOG_LEVEL)
    scheduler.add_job(daily_task, "cron", hour=0, minute=1, id="daily_rollover", replace_existing=True)
    scheduler.start()
    yield
    scheduler.shutdown(wait=False)
    if _manager is not None:
        _manager.close()


app = FastAPI(title="HabitStack API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------
# MODELS
# -------------------------------
class SignInModel(BaseModel):
    email: str
    password: str


class StackModel(BaseModel):
    name: str
    description: Optional[str] = None


class HabitModel(BaseModel):
    name: str
    description: Optional[str] = None
    duration: int = 1
    trigger: str = ""
    stack_id: Optional[str] = None


def _result(manager: HabitStateManager, **payload):
    if manager.error:
        return {"success": False, "error": manager.error}
    return {"success": True, **payload}


# -------------------------------
# AUTH ROUTES
# -------------------------------
@app.post("/auth/sign-in")
def sign_in(body: SignInModel, manager: HabitStateManager = Depends(get_manager)):
    try:
        user = manager.auth.sign_in_with_password(body.email, body.password)
    except Exception as e:
        raise HTTPException(status_code=401, detail=f"Sign-in error: {str(e)}")
    return _result(manager, user=user, mode=manager.mode)


@app.post("/auth/sign-out")
def sign_out(manager: HabitStateManager = Depends(get_manager)):
    manager.auth.sign_out()
    return {"success": True, "mode": manager.mode}


@app.get("/state")
def state(manager: HabitStateManager = Depends(get_manager)):
    return {
        "user": manager.user,
        "mode": manager.mode,
        "is_loading": manager.is_loading,
        "error": manager.error,
        "stacks": manager.stacks,
        "completed_today": manager.completed_today,
    }


# -------------------------------
# STACK ROUTES
# -------------------------------
@app.post("/stacks")
def add_stack(body: StackModel, manager: HabitStateManager = Depends(get_manager)):
    stack = manager.add_stack(HabitStack(name=body.name, description=body.description))
    return _result(manager, stack=stack)


@app.put("/stacks/{stack_id}")
def update_stack(stack_id: str, body: StackModel, manager: HabitStateManager = Depends(get_manager)):
    stack = manager.update_stack(HabitStack(id=stack_id, name=body.name, description=body.description))
    return _result(manager, stack=stack)


@app.delete("/stacks/{stack_id}")
def delete_stack(stack_id: str, manager: HabitStateManager = Depends(get_manager)):
    manager.delete_stack(stack_id)
    return _result(manager, stack_id=stack_id)


@app.get("/stacks/{stack_id}/stats")
def stack_stats(stack_id: str, manager: HabitStateManager = Depends(get_manager)):
    stack = manager.get_stack(stack_id)
    if stack is None:
        raise HTTPException(status_code=404, detail="Stack not found")
    return {"success": True, **logic.stack_stats(stack, manager.completed_today)}


# -------------------------------
# HABIT ROUTES
# -------------------------------
@app.post("/habits")
def add_habit(body: HabitModel, manager: HabitStateManager = Depends(get_manager)):
    habit = manager.add_habit(Habit(**body.model_dump()))
    return _result(manager, habit=habit)


@app.put("/habits/{habit_id}")
def update_habit(habit_id: str, body: HabitModel, manager: HabitStateManager = Depends(get_manager)):
    current = next((h for h in manager.habits if h.id == habit_id), None)
    if current is None:
        raise HTTPException(status_code=404, detail="Habit not found")
    habit = manager.update_habit(current.model_copy(update=body.model_dump(exclude_unset=True)))
    return _result(manager, habit=habit)


@app.delete("/habits/{habit_id}")
def delete_habit(habit_id: str, manager: HabitStateManager = Depends(get_manager)):
    manager.delete_habit(habit_id)
    return _result(manager, habit_id=habit_id)


@app.post("/habits/{habit_id}/toggle")
def toggle_habit(habit_id: str, manager: HabitStateManager = Depends(get_manager)):
    completed = manager.toggle_habit_completion(habit_id)
    return _result(manager, habit_id=habit_id, completed=completed)


@app.get("/habits/{habit_id}/completed")
def habit_completed(habit_id: str, day: Optional[date] = None, manager: HabitStateManager = Depends(get_manager)):
    day = day or manager.clock()
    return {
        "success": True,
        "habit_id": habit_id,
        "date": day.isoformat(),
        "completed": manager.is_habit_completed_on_date(habit_id, day),
    }


# -------------------------------
# PROGRESS ROUTES
# -------------------------------
@app.get("/progress/today")
def today_progress(manager: HabitStateManager = Depends(get_manager)):
    summary = logic.today_summary(manager.stacks, manager.completed_today, manager.clock())
    return {"success": True, **summary}


@app.get("/progress/week")
def week_progress(manager: HabitStateManager = Depends(get_manager)):
    days = logic.weekly_progress(manager.stacks, manager.get_completed_habits_for_range, manager.clock())
    return {"success": True, "days": days}


@app.get("/progress/stats")
def productivity_stats(start: Optional[date] = None, end: Optional[date] = None,
                       manager: HabitStateManager = Depends(get_manager)):
    end = end or manager.clock()
    start = start or logic.week_start(end)
    if start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    stats = manager.productivity_stats(start, end)
    return _result(manager, start=start.isoformat(), end=end.isoformat(), **(stats or {}))


@app.post("/migrate")
def migrate(manager: HabitStateManager = Depends(get_manager)):
    return manager.migrate_local_data()


@app.get("/")
def root():
    return {"message": "HabitStack API is running", "status": "healthy"}


@app.get("/health")
def health_check():
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
