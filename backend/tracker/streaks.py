"""
Habit streak engine.

Computes current and longest streaks and the success rate of a habit from
its per-day completion log. Streaks are counted in calendar days: a run
starts and ends on a completed day, and a gap of missed days inside it is
bridged when the gap is no longer than the habit's grace days. Each gap is
judged on its own, so two short gaps never add up into a break.
"""

import math
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from .models import HabitFrequency, HabitLogEntry, StreakStats

Run = Tuple[date, date]


def collapse_log(log: Iterable[HabitLogEntry]) -> Dict[date, bool]:
    """
    Reduce a log to one completion flag per day.

    Several entries for the same day collapse into one that is completed
    if any of them is.
    """
    days: Dict[date, bool] = {}
    for entry in log:
        days[entry.date] = days.get(entry.date, False) or entry.completed
    return days


def effective_grace(grace_days: int, frequency: HabitFrequency = "daily",
                    times_per_week: Optional[int] = None) -> int:
    """
    Grace days allowed between two completions.

    A habit expected fewer than seven times a week is allowed at least the
    spacing its schedule implies.
    """
    grace = max(grace_days, 0)
    if frequency == "daily":
        return grace
    per_week = times_per_week or 1
    return max(grace, 7 // per_week - 1)


def completed_runs(completed_days: List[date], grace_days: int) -> List[Run]:
    """Group sorted completed days into runs, bridging gaps of at most ``grace_days``."""
    if not completed_days:
        return []

    runs: List[Run] = []
    start = prev = completed_days[0]
    for day in completed_days[1:]:
        gap = (day - prev).days - 1
        if gap <= grace_days:
            prev = day
        else:
            runs.append((start, prev))
            start = prev = day
    runs.append((start, prev))
    return runs


def run_length(run: Run) -> int:
    return (run[1] - run[0]).days + 1


def expected_completions(elapsed_days: int, frequency: HabitFrequency = "daily",
                         times_per_week: Optional[int] = None) -> int:
    if frequency == "daily":
        return max(elapsed_days, 1)
    per_week = times_per_week or 1
    return max(math.ceil(elapsed_days * per_week / 7), 1)


def compute_streak_stats(
    log: Iterable[HabitLogEntry],
    grace_days: int = 0,
    frequency: HabitFrequency = "daily",
    times_per_week: Optional[int] = None,
    created_on: Optional[date] = None,
    as_of: Optional[date] = None,
) -> StreakStats:
    """
    Compute streak statistics for a habit log.

    Args:
        log: Completion entries in any order
        grace_days: Missed days tolerated inside a streak
        frequency: Habit frequency, used for the expected completion count
        times_per_week: Target completions per week for weekly/custom habits
        created_on: Habit creation date; defaults to the earliest log date
        as_of: Day the current streak is measured at; defaults to the most
            recent log date. The day itself only counts as missed when the
            log explicitly marks it so.

    Returns:
        StreakStats, all zeros for an empty log
    """
    days = collapse_log(log)
    if not days:
        return StreakStats()

    as_of = as_of or max(days)
    days = {day: done for day, done in days.items() if day <= as_of}
    completed = sorted(day for day, done in days.items() if done)
    if not completed:
        return StreakStats()

    grace = effective_grace(grace_days, frequency, times_per_week)
    runs = completed_runs(completed, grace)
    longest = max(run_length(run) for run in runs)

    last_run = runs[-1]
    leading_missed = max((as_of - last_run[1]).days - 1, 0)
    if as_of > last_run[1] and days.get(as_of) is False:
        leading_missed += 1
    current = run_length(last_run) if leading_missed <= grace else 0

    start = min(created_on or completed[0], min(days))
    elapsed = (as_of - start).days + 1
    expected = expected_completions(elapsed, frequency, times_per_week)
    success_rate = min(max(len(completed) / expected * 100, 0.0), 100.0)

    return StreakStats(
        current_streak=current,
        longest_streak=longest,
        total_completions=len(completed),
        success_rate=round(success_rate, 1),
    )
