# Habit completion tracking for the productivity tracker application
import calendar
import logging
from datetime import date, timedelta
from typing import Optional

from .models import (
    Habit,
    HabitCalendar,
    HabitLogEntry,
    HabitStatsResponse,
    StreakStats,
)
from .streaks import compute_streak_stats

logger = logging.getLogger(__name__)

MILESTONE_DAYS = 7
HISTORY_LIMIT = 90


class HabitError(Exception):
    """Raised when a completion change does not apply to the habit's log."""


def streak_stats(habit: Habit, as_of: Optional[date] = None) -> StreakStats:
    return compute_streak_stats(
        habit.completions,
        grace_days=habit.grace_days,
        frequency=habit.frequency,
        times_per_week=habit.times_per_week,
        created_on=habit.created_on,
        as_of=as_of or date.today(),
    )


def _find_entry(habit: Habit, on: date) -> Optional[HabitLogEntry]:
    for entry in habit.completions:
        if entry.date == on:
            return entry
    return None


def complete_habit(habit: Habit, on: Optional[date] = None, notes: str = "") -> Habit:
    """
    Mark a habit completed for a day.

    Returns a new Habit with the updated log; raises HabitError if the day
    is already completed.
    """
    on = on or date.today()
    existing = _find_entry(habit, on)
    if existing and existing.completed:
        raise HabitError(f"Habit already completed for {on.isoformat()}")

    completions = [entry for entry in habit.completions if entry.date != on]
    completions.append(HabitLogEntry(date=on, completed=True, notes=notes))
    completions.sort(key=lambda entry: entry.date)
    updated = habit.model_copy(update={"completions": completions})

    stats = streak_stats(updated, as_of=on)
    if stats.current_streak > 0 and stats.current_streak % MILESTONE_DAYS == 0:
        logger.info(
            "Habit %s reached a %d-day streak", habit.name, stats.current_streak
        )
    return updated


def uncomplete_habit(habit: Habit, on: date) -> Habit:
    """Flip a completed day back to missed; raises HabitError if there is nothing to undo."""
    existing = _find_entry(habit, on)
    if not existing or not existing.completed:
        raise HabitError(f"No completion found for {on.isoformat()}")

    completions = [
        entry.model_copy(update={"completed": False}) if entry.date == on else entry
        for entry in habit.completions
    ]
    return habit.model_copy(update={"completions": completions})


def habit_stats(habit: Habit, as_of: Optional[date] = None) -> HabitStatsResponse:
    as_of = as_of or date.today()
    stats = streak_stats(habit, as_of=as_of)

    def completed_within(days: int) -> int:
        cutoff = as_of - timedelta(days=days - 1)
        return sum(
            1 for entry in habit.completions
            if entry.completed and cutoff <= entry.date <= as_of
        )

    history = sorted(habit.completions, key=lambda entry: entry.date)[-HISTORY_LIMIT:]
    return HabitStatsResponse(
        **stats.model_dump(),
        habit=habit,
        last_7_days=completed_within(7),
        last_30_days=completed_within(30),
        history=history,
    )


def habit_calendar(habit: Habit, year: int, month: int,
                   as_of: Optional[date] = None) -> HabitCalendar:
    total_days = calendar.monthrange(year, month)[1]
    first, last = date(year, month, 1), date(year, month, total_days)
    days = {
        entry.date.isoformat(): entry.completed
        for entry in habit.completions
        if first <= entry.date <= last
    }
    return HabitCalendar(
        year=year,
        month=month,
        calendar=days,
        streak=streak_stats(habit, as_of=as_of).current_streak,
        total_days=total_days,
    )
