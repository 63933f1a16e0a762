"""Derived habit metrics.

Everything here is a pure function of the habit and completion collections.
Nothing is cached: each call rescans the completion list, so results always
reflect the latest local state, including state just replaced by a pull.
"""

from __future__ import annotations

import datetime as dt
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .store.types import Habit, HabitCompletion
from .store.utils import parse_day


@dataclass(frozen=True)
class Streak:
    current: int
    best: int


@dataclass(frozen=True)
class HabitStats:
    habit: Habit
    current_streak: int
    best_streak: int
    completion_rate_7_days: int
    completion_rate_30_days: int
    today_completed: bool
    today_value: float | None = None


@dataclass(frozen=True)
class HistoryDay:
    date: dt.date
    completed: bool
    value: float | None = None


@dataclass(frozen=True)
class HabitHistorySummary:
    habit: Habit
    completed_days: int
    completion_rate: int
    current_streak: int


def _today(today: dt.date | None) -> dt.date:
    return today or dt.date.today()


def _round_percent(numerator: int, denominator: int) -> int:
    # Half-up, not banker's rounding: 0.5 -> 1.
    return int(math.floor(numerator * 100 / denominator + 0.5))


def _completed_days(habit_id: str, completions: Iterable[HabitCompletion]) -> list[dt.date]:
    days: set[dt.date] = set()
    for completion in completions:
        if completion.habit_id != habit_id or not completion.completed:
            continue
        day = parse_day(completion.date)
        if day is not None:
            days.add(day)
    return sorted(days, reverse=True)


def streak(
    habit_id: str,
    completions: Iterable[HabitCompletion],
    today: dt.date | None = None,
) -> Streak:
    days = _completed_days(habit_id, completions)
    if not days:
        return Streak(current=0, best=0)

    anchor = _today(today)
    active = (anchor - days[0]).days <= 1
    current = 0
    best = 0
    run = 0
    leading = True
    previous: dt.date | None = None
    for day in days:
        if previous is not None and (previous - day).days == 1:
            run += 1
        else:
            if previous is not None:
                leading = False
            run = 1
        if leading and active:
            current = run
        best = max(best, run)
        previous = day
    return Streak(current=current, best=best)


def completion_rate(
    habit_id: str,
    completions: Iterable[HabitCompletion],
    window_days: int,
    today: dt.date | None = None,
) -> int:
    if window_days <= 0:
        raise ValueError("window_days must be positive")
    end = _today(today)
    start = end - dt.timedelta(days=window_days)
    completed = 0
    for completion in completions:
        if completion.habit_id != habit_id or not completion.completed:
            continue
        day = parse_day(completion.date)
        if day is not None and start < day <= end:
            completed += 1
    return _round_percent(completed, window_days)


def habit_with_stats(
    habit: Habit,
    completions: Sequence[HabitCompletion],
    today: dt.date | None = None,
) -> HabitStats:
    anchor = _today(today)
    streaks = streak(habit.id, completions, anchor)
    today_key = anchor.isoformat()
    today_completion = next(
        (c for c in completions if c.habit_id == habit.id and c.date == today_key),
        None,
    )
    return HabitStats(
        habit=habit,
        current_streak=streaks.current,
        best_streak=streaks.best,
        completion_rate_7_days=completion_rate(habit.id, completions, 7, anchor),
        completion_rate_30_days=completion_rate(habit.id, completions, 30, anchor),
        today_completed=bool(today_completion and today_completion.completed),
        today_value=today_completion.value if today_completion else None,
    )


def habits_with_stats(
    habits: Iterable[Habit],
    completions: Sequence[HabitCompletion],
    today: dt.date | None = None,
) -> list[HabitStats]:
    anchor = _today(today)
    return [habit_with_stats(habit, completions, anchor) for habit in habits]


def completion_history(
    habit_id: str,
    completions: Iterable[HabitCompletion],
    days: int = 30,
    today: dt.date | None = None,
) -> list[HistoryDay]:
    anchor = _today(today)
    by_day: dict[dt.date, HabitCompletion] = {}
    for completion in completions:
        if completion.habit_id != habit_id:
            continue
        day = parse_day(completion.date)
        if day is not None:
            by_day[day] = completion
    history: list[HistoryDay] = []
    for offset in range(days - 1, -1, -1):
        day = anchor - dt.timedelta(days=offset)
        record = by_day.get(day)
        history.append(
            HistoryDay(
                date=day,
                completed=bool(record and record.completed),
                value=record.value if record else None,
            )
        )
    return history


def history_summary(
    habits: Iterable[Habit],
    completions: Sequence[HabitCompletion],
    days: int = 30,
    today: dt.date | None = None,
) -> list[HabitHistorySummary]:
    anchor = _today(today)
    summaries: list[HabitHistorySummary] = []
    for habit in habits:
        history = completion_history(habit.id, completions, days, anchor)
        completed_days = sum(1 for day in history if day.completed)
        summaries.append(
            HabitHistorySummary(
                habit=habit,
                completed_days=completed_days,
                completion_rate=_round_percent(completed_days, days),
                current_streak=streak(habit.id, completions, anchor).current,
            )
        )
    return summaries


def best_current_streak(summaries: Iterable[HabitHistorySummary]) -> int:
    return max((s.current_streak for s in summaries), default=0)
