import threading
from datetime import datetime, timedelta

from habitstack.db import COMPLETIONS, HABITS, PROFILES, STACKS
from habitstack.local_store import COMPLETED_KEY, STACKS_KEY
from habitstack.manager import HabitStateManager
from habitstack.logic import today_completion_percentage
from habitstack.models import Habit, HabitStack

from conftest import TODAY


def _stack_habit_ids(manager, stack_id):
    return [h.id for h in manager.get_stack(stack_id).habits]


# -------------------------------
# LOCAL MODE
# -------------------------------
def test_starts_in_local_mode(local_manager):
    assert local_manager.mode == "local"
    assert local_manager.user is None
    assert local_manager.stacks == []


def test_added_habit_is_in_flat_list_and_stack(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    habit = local_manager.add_habit(Habit(name="Drink water", trigger="After waking up", stack_id=stack.id))

    assert habit.id
    assert [h.id for h in local_manager.habits] == [habit.id]
    assert _stack_habit_ids(local_manager, stack.id) == [habit.id]
    assert local_manager.error is None


def test_habits_keep_insertion_order_in_their_stack(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    ids = [local_manager.add_habit(Habit(name=n, stack_id=stack.id)).id for n in ("a", "b", "c")]
    assert _stack_habit_ids(local_manager, stack.id) == ids


def test_delete_habit_removes_it_everywhere(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    keep = local_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))
    drop = local_manager.add_habit(Habit(name="Stretch", stack_id=stack.id))

    assert local_manager.delete_habit(drop.id) is True

    assert [h.id for h in local_manager.habits] == [keep.id]
    assert _stack_habit_ids(local_manager, stack.id) == [keep.id]
    assert local_manager.habits[0] == keep


def test_update_habit_is_seen_through_the_stack(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    habit = local_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))

    local_manager.update_habit(habit.model_copy(update={"name": "Drink a glass of water"}))

    assert local_manager.get_stack(stack.id).habits[0].name == "Drink a glass of water"


def test_unknown_stack_is_reported_not_raised(local_manager):
    assert local_manager.add_habit(Habit(name="Drink water", stack_id="nope")) is None
    assert local_manager.error == "Failed to add habit. Please try again."
    assert local_manager.habits == []


def test_habit_without_a_stack_is_rejected(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    local_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))

    assert local_manager.add_habit(Habit(name="Loose")) is None
    assert local_manager.error == "Failed to add habit. Please try again."
    assert [h.name for h in local_manager.habits] == ["Drink water"]
    assert today_completion_percentage(local_manager.stacks, local_manager.completed_today) == 0


def test_habit_cannot_be_moved_out_of_its_stack(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    habit = local_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))

    assert local_manager.update_habit(habit.model_copy(update={"stack_id": None})) is None
    assert local_manager.error == "Failed to update habit. Please try again."
    assert _stack_habit_ids(local_manager, stack.id) == [habit.id]


def test_double_toggle_restores_state(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    habit = local_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))

    assert local_manager.toggle_habit_completion(habit.id) is True
    assert local_manager.is_habit_completed(habit.id)
    assert local_manager.toggle_habit_completion(habit.id) is False
    assert not local_manager.is_habit_completed(habit.id)


def test_local_mutations_are_flushed_to_the_store(local_manager, store):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    habit = local_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))
    local_manager.toggle_habit_completion(habit.id)

    stored = store.get(STACKS_KEY)
    assert stored[0]["name"] == "Morning"
    assert stored[0]["habits"][0]["name"] == "Drink water"
    assert "createdAt" in stored[0]["habits"][0]
    assert store.get(COMPLETED_KEY) == [habit.id]


def test_local_state_is_loaded_lazily(auth, store, gateway, clock):
    first = HabitStateManager(auth, store, gateway, clock=clock)
    stack = first.add_stack(HabitStack(name="Morning"))
    habit = first.add_habit(Habit(name="Drink water", stack_id=stack.id))
    first.toggle_habit_completion(habit.id)
    first.close()

    second = HabitStateManager(auth, store, gateway, clock=clock)
    assert second.session.loaded is False
    assert [s.name for s in second.stacks] == ["Morning"]
    assert second.get_stack(stack.id).habits[0].id == habit.id
    assert second.is_habit_completed(habit.id)
    second.close()


def test_delete_stack_cascades_to_its_habits(local_manager):
    morning = local_manager.add_stack(HabitStack(name="Morning"))
    evening = local_manager.add_stack(HabitStack(name="Evening"))
    gone = local_manager.add_habit(Habit(name="Drink water", stack_id=morning.id))
    kept = local_manager.add_habit(Habit(name="Read", stack_id=evening.id))
    local_manager.toggle_habit_completion(gone.id)

    assert local_manager.delete_stack(morning.id) is True

    assert [s.id for s in local_manager.stacks] == [evening.id]
    assert [h.id for h in local_manager.habits] == [kept.id]
    assert local_manager.completed_today == {}


def test_update_stack_keeps_its_habits(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    habit = local_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))

    updated = local_manager.update_stack(HabitStack(id=stack.id, name="Sunrise"))

    assert updated.name == "Sunrise"
    assert [h.id for h in updated.habits] == [habit.id]


def test_completed_set_expires_with_the_day(local_manager, clock):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    habit = local_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))
    local_manager.toggle_habit_completion(habit.id)

    clock.today = TODAY + timedelta(days=1)

    assert not local_manager.is_habit_completed(habit.id)
    assert local_manager.toggle_habit_completion(habit.id) is True


def test_roll_over_clears_the_stored_completions(local_manager, store):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    habit = local_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))
    local_manager.toggle_habit_completion(habit.id)

    local_manager.roll_over()

    assert local_manager.completed_today == {}
    assert store.get(COMPLETED_KEY) == []


def test_range_query_uses_creation_dates(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    created = datetime(2026, 10, 19, 9, 30)
    old = local_manager.add_habit(Habit(name="Old", stack_id=stack.id, created_at=created))
    local_manager.add_habit(Habit(name="New", stack_id=stack.id, created_at=created + timedelta(days=2)))

    found = local_manager.get_completed_habits_for_range(created.date(), created.date())

    assert [h.id for h in found] == [old.id]
    assert len(local_manager.get_completed_habits_for_range(created.date(), TODAY)) == 2


def test_completed_on_date_only_knows_today_locally(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    habit = local_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))
    local_manager.toggle_habit_completion(habit.id)

    assert local_manager.is_habit_completed_on_date(habit.id, TODAY) is True
    assert local_manager.is_habit_completed_on_date(habit.id, TODAY - timedelta(days=1)) is False


def test_local_productivity_stats_cover_today(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    done = local_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))
    idle = local_manager.add_habit(Habit(name="Stretch", stack_id=stack.id))
    local_manager.toggle_habit_completion(done.id)

    stats = local_manager.productivity_stats(TODAY - timedelta(days=6), TODAY)

    assert stats["total_habits"] == 2
    assert stats["total_completions"] == 1
    assert stats["current_streak"] == 1
    assert stats["completions_per_habit"] == {done.id: 1, idle.id: 0}
    assert local_manager.productivity_stats(TODAY - timedelta(days=6), TODAY - timedelta(days=1))["total_completions"] == 0


def test_concurrent_reads_and_writes(local_manager):
    stack = local_manager.add_stack(HabitStack(name="Morning"))
    errors = []
    stop = threading.Event()

    def write():
        try:
            for n in range(30):
                habit = local_manager.add_habit(Habit(name=f"habit {n}", stack_id=stack.id))
                extra = local_manager.add_stack(HabitStack(name=f"extra {n}"))
                local_manager.delete_habit(habit.id)
                local_manager.delete_stack(extra.id)
        except Exception as e:
            errors.append(e)
        finally:
            stop.set()

    def read():
        try:
            while not stop.is_set():
                for s in local_manager.stacks:
                    len(s.habits)
                local_manager.completed_today
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=write)] + [threading.Thread(target=read) for _ in range(3)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert local_manager.error is None
    assert [s.name for s in local_manager.stacks] == ["Morning"]


# -------------------------------
# REMOTE MODE
# -------------------------------
def test_sign_in_creates_profile_and_default_stack(remote_manager, client, user):
    assert remote_manager.mode == "remote"
    assert remote_manager.user == user
    assert [p["id"] for p in client.rows(PROFILES)] == [user.id]
    assert [s.name for s in remote_manager.stacks] == ["My First Stack"]
    assert remote_manager.stacks[0].description == "Getting started with habits"
    assert client.rows(STACKS)[0]["user_id"] == user.id
    assert client.rows(STACKS)[0]["description"] == "Getting started with habits"
    assert remote_manager.is_loading is False


def test_sign_in_loads_existing_data(auth, store, gateway, client, clock, user):
    stack = gateway.create_stack(HabitStack(name="Morning", user_id=user.id))
    habit = gateway.create_habit(Habit(name="Drink water", stack_id=stack.id, user_id=user.id))
    for days_ago in (0, 1, 2):
        gateway.create_completion(habit.id, TODAY - timedelta(days=days_ago), user.id)

    manager = HabitStateManager(auth, store, gateway, clock=clock)
    auth.sign_in(user)

    assert [s.name for s in manager.stacks] == ["Morning"]
    assert manager.get_stack(stack.id).habits[0].id == habit.id
    assert manager.is_habit_completed(habit.id)
    assert manager.habits[0].streak == 3
    assert len(client.rows(STACKS)) == 1
    manager.close()


def test_remote_toggle_goes_through_the_gateway(remote_manager, client):
    stack = remote_manager.stacks[0]
    habit = remote_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))
    assert client.rows(HABITS)[0]["user_id"] == "user-1"

    assert remote_manager.toggle_habit_completion(habit.id) is True
    assert len(client.rows(COMPLETIONS)) == 1
    assert remote_manager.habits[0].streak == 1

    assert remote_manager.toggle_habit_completion(habit.id) is False
    assert client.rows(COMPLETIONS) == []
    assert remote_manager.habits[0].streak == 0


def test_remote_mode_does_not_touch_the_local_store(remote_manager, store):
    remote_manager.add_stack(HabitStack(name="Evening"))
    assert store.get(STACKS_KEY) is None


def test_remote_failure_leaves_state_untouched(remote_manager, client):
    stack = remote_manager.stacks[0]
    habit = remote_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))
    client.fail(HABITS, "delete")

    assert remote_manager.delete_habit(habit.id) is None

    assert remote_manager.error == "Failed to delete habit. Please try again."
    assert [h.id for h in remote_manager.habits] == [habit.id]
    assert _stack_habit_ids(remote_manager, stack.id) == [habit.id]


def test_error_is_cleared_by_the_next_operation(remote_manager, client):
    client.fail(STACKS, "insert")
    remote_manager.add_stack(HabitStack(name="Evening"))
    assert remote_manager.error is not None

    remote_manager.add_stack(HabitStack(name="Evening"))
    assert remote_manager.error is None
    assert [s.name for s in remote_manager.stacks] == ["My First Stack", "Evening"]


def test_failed_load_records_an_error(auth, store, gateway, client, clock, user):
    client.fail(STACKS, "select")
    manager = HabitStateManager(auth, store, gateway, clock=clock)
    auth.sign_in(user)

    assert manager.error == "Failed to load habit data. Please try again."
    assert manager.stacks == []
    assert manager.is_loading is False
    manager.close()


def test_remote_update_habit_clears_fields_and_moves_stacks(remote_manager, client):
    first = remote_manager.stacks[0]
    evening = remote_manager.add_stack(HabitStack(name="Evening"))
    habit = remote_manager.add_habit(Habit(name="Drink water", description="d", stack_id=first.id))

    updated = remote_manager.update_habit(
        habit.model_copy(update={"name": "Read", "description": None, "stack_id": evening.id})
    )

    assert updated.description is None
    row = client.rows(HABITS)[0]
    assert row["name"] == "Read"
    assert row["description"] is None
    assert row["stack_id"] == evening.id
    assert _stack_habit_ids(remote_manager, evening.id) == [habit.id]
    assert _stack_habit_ids(remote_manager, first.id) == []


def test_remote_update_stack_persists_name_and_description(remote_manager, client):
    stack = remote_manager.stacks[0]
    habit = remote_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))

    updated = remote_manager.update_stack(HabitStack(id=stack.id, name="Sunrise", description="Before work"))

    assert updated.name == "Sunrise"
    assert [h.id for h in updated.habits] == [habit.id]
    row = client.rows(STACKS)[0]
    assert (row["name"], row["description"]) == ("Sunrise", "Before work")


def test_remote_delete_stack(remote_manager, client):
    evening = remote_manager.add_stack(HabitStack(name="Evening"))
    habit = remote_manager.add_habit(Habit(name="Read", stack_id=evening.id))

    assert remote_manager.delete_stack(evening.id) is True

    assert [r["name"] for r in client.rows(STACKS)] == ["My First Stack"]
    assert habit.id not in [h.id for h in remote_manager.habits]
    assert remote_manager.get_stack(evening.id) is None


def test_remote_refresh_picks_up_new_rows(remote_manager, gateway, user):
    stack = remote_manager.stacks[0]
    added = gateway.create_habit(Habit(name="Stretch", stack_id=stack.id, user_id=user.id))
    assert remote_manager.habits == []

    assert remote_manager.refresh_habits() is True

    assert [h.id for h in remote_manager.habits] == [added.id]
    assert remote_manager.error is None


def test_remote_roll_over_reloads_for_the_new_day(remote_manager, client, clock):
    stack = remote_manager.stacks[0]
    habit = remote_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))
    remote_manager.toggle_habit_completion(habit.id)
    selects = client.calls.count((STACKS, "select"))

    clock.today = TODAY + timedelta(days=1)
    remote_manager.roll_over()

    assert client.calls.count((STACKS, "select")) == selects + 1
    assert remote_manager.completed_today == {}
    assert remote_manager.habits[0].streak == 1
    assert len(client.rows(COMPLETIONS)) == 1


def test_remote_completion_history(remote_manager, gateway, user):
    stack = remote_manager.stacks[0]
    habit = remote_manager.add_habit(Habit(name="Drink water", stack_id=stack.id))
    idle = remote_manager.add_habit(Habit(name="Stretch", stack_id=stack.id))
    for days_ago in (1, 2):
        gateway.create_completion(habit.id, TODAY - timedelta(days=days_ago), user.id)
    remote_manager.toggle_habit_completion(habit.id)

    assert remote_manager.is_habit_completed_on_date(habit.id, TODAY - timedelta(days=1)) is True
    assert remote_manager.is_habit_completed_on_date(habit.id, TODAY - timedelta(days=5)) is False

    stats = remote_manager.productivity_stats(TODAY - timedelta(days=6), TODAY)
    assert stats["total_completions"] == 3
    assert stats["active_days"] == 3
    assert stats["current_streak"] == 3
    assert stats["completions_per_habit"] == {habit.id: 3, idle.id: 0}


def test_remote_productivity_stats_failure_is_recorded(remote_manager, client):
    client.fail(COMPLETIONS, "select")
    assert remote_manager.productivity_stats(TODAY - timedelta(days=6), TODAY) is None
    assert remote_manager.error == "Failed to load productivity stats. Please try again."


def test_sign_out_clears_remote_state(remote_manager, auth, store):
    store.set(STACKS_KEY, [{"id": "s-local", "name": "Local", "habits": []}])
    auth.sign_out()

    assert remote_manager.mode == "local"
    assert remote_manager.user is None
    assert remote_manager.session.loaded is False
    assert [s.name for s in remote_manager.stacks] == ["Local"]


def test_sign_in_without_a_gateway(auth, store, clock, user):
    manager = HabitStateManager(auth, store, clock=clock)
    auth.sign_in(user)

    assert manager.error == "Cloud sync is not configured. Please try again later."
    assert manager.stacks == []
    assert manager.add_stack(HabitStack(name="Morning")) is None
    manager.close()


def test_close_stops_following_auth(auth, store, gateway, clock, user):
    manager = HabitStateManager(auth, store, gateway, clock=clock)
    manager.close()
    auth.sign_in(user)
    assert manager.mode == "local"


def test_migrate_then_reload(auth, store, gateway, clock, user):
    store.set(STACKS_KEY, [{"name": "Morning", "habits": [{"id": "a", "name": "Drink water"}]}])
    store.set(COMPLETED_KEY, {"a": True})
    manager = HabitStateManager(auth, store, gateway, clock=clock)
    auth.sign_in(user)

    result = manager.migrate_local_data()

    assert result["success"] is True
    assert [s.name for s in manager.stacks] == ["My First Stack", "Morning"]
    migrated = manager.stacks[1].habits[0]
    assert migrated.name == "Drink water"
    assert manager.is_habit_completed(migrated.id)
    manager.close()


def test_migrate_requires_a_signed_in_user(local_manager):
    assert local_manager.migrate_local_data()["success"] is False
