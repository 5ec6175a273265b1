"""HabitStack: habit stacks, daily completions and streaks on Supabase or a local store."""

__version__ = "0.1.0"
