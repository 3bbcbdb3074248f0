from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .dataset import AnalyticsDataset, coerce_timezone, ensure_utc, start_of_day
from .engagement import power_users, profile_names
from .errors import count_unresolved
from .models import ActivityPoint, ChatMessage, ErrorLogRecord, OverviewStats

logger = logging.getLogger(__name__)

WEEKDAY_LABELS = ("Seg", "Ter", "Qua", "Qui", "Sex", "Sáb", "Dom")
ACTIVE_WINDOW = timedelta(days=7)
POWER_USERS_LIST_SIZE = 50


def calc_change(current: float, previous: float) -> int:
    """
    Period-over-period change in whole percent. Growth from zero is 100.
    """

    if previous == 0:
        return 100 if current > 0 else 0
    return math.floor((current - previous) / previous * 100 + 0.5)


def weekly_activity(
    messages: Iterable[ChatMessage],
    now: datetime,
    tz_name: str = "UTC",
    days: int = 7,
) -> List[ActivityPoint]:
    """
    Messages and distinct senders per local day for the last ``days`` days,
    oldest first, today included.
    """

    tz = coerce_timezone(tz_name)
    today = start_of_day(now, tz_name).date()
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    message_totals: Dict[date, int] = defaultdict(int)
    senders: Dict[date, Set[str]] = defaultdict(set)
    for message in messages:
        day = ensure_utc(message.created_at).astimezone(tz).date()
        message_totals[day] += 1
        if message.user_id:
            senders[day].add(message.user_id)

    return [
        ActivityPoint(
            day=day,
            weekday_label=WEEKDAY_LABELS[day.weekday()],
            messages=message_totals.get(day, 0),
            users=len(senders.get(day, ())),
        )
        for day in window
    ]


def _users_between(
    rows: Iterable[tuple], start: datetime, end: Optional[datetime] = None
) -> Set[str]:
    users = set()
    for user_id, moment in rows:
        if not user_id or moment is None:
            continue
        moment = ensure_utc(moment)
        if moment >= start and (end is None or moment < end):
            users.add(user_id)
    return users


def _count_between(moments: Iterable[datetime], start: datetime, end: Optional[datetime] = None) -> int:
    return sum(
        1
        for moment in moments
        if ensure_utc(moment) >= start and (end is None or ensure_utc(moment) < end)
    )


def build_overview(
    dataset: AnalyticsDataset,
    now: datetime,
    errors: Optional[Sequence[ErrorLogRecord]],
    tz_name: str = "UTC",
) -> OverviewStats:
    """
    Headline cards: active users over the last 7 days against the 7 days
    before, catalog-only users, totals with week-over-week change, unresolved
    errors today against yesterday and power users.

    ``errors`` is ``None`` when the error log is unavailable; the error cards
    are then reported as unknown instead of zero.
    """

    now = ensure_utc(now)
    current_start = now - ACTIVE_WINDOW
    previous_start = now - 2 * ACTIVE_WINDOW

    message_rows = [(message.user_id, message.created_at) for message in dataset.messages]
    favorite_rows = [(favorite.user_id, favorite.created_at) for favorite in dataset.favorites]
    preference_rows = [(preference.user_id, preference.updated_at) for preference in dataset.preferences]

    messaging_now = _users_between(message_rows, current_start)
    messaging_before = _users_between(message_rows, previous_start, current_start)

    catalog_now = (
        _users_between(favorite_rows, current_start) | _users_between(preference_rows, current_start)
    ) - messaging_now
    catalog_before = (
        _users_between(favorite_rows, previous_start, current_start)
        | _users_between(preference_rows, previous_start, current_start)
    ) - messaging_before

    active_now = len(messaging_now) + len(catalog_now)
    active_before = len(messaging_before) + len(catalog_before)

    message_times = [message.created_at for message in dataset.messages]
    favorite_times = [favorite.created_at for favorite in dataset.favorites]

    errors_today: Optional[int] = None
    errors_change: Optional[int] = None
    if errors is not None:
        today_start = start_of_day(now, tz_name)
        errors_today = count_unresolved(errors, today_start)
        errors_yesterday = count_unresolved(errors, today_start - timedelta(days=1), today_start)
        errors_change = calc_change(errors_today, errors_yesterday)

    power = power_users(dataset.message_times_by_user(), profile_names(dataset.profiles))
    power_before = math.floor(len(power) * (len(messaging_before) / max(len(messaging_now), 1)) + 0.5)

    stats = OverviewStats(
        total_registered=len(dataset.profiles),
        active_users=active_now,
        active_users_with_messages=len(messaging_now),
        catalog_users=len(catalog_now),
        active_users_change=calc_change(active_now, active_before),
        catalog_users_change=calc_change(len(catalog_now), len(catalog_before)),
        total_messages=len(message_times),
        messages_change=calc_change(
            _count_between(message_times, current_start),
            _count_between(message_times, previous_start, current_start),
        ),
        total_favorites=len(favorite_times),
        favorites_change=calc_change(
            _count_between(favorite_times, current_start),
            _count_between(favorite_times, previous_start, current_start),
        ),
        errors_today=errors_today,
        errors_change=errors_change,
        power_users=len(power),
        power_users_change=calc_change(len(power), power_before),
        power_users_list=tuple(power[:POWER_USERS_LIST_SIZE]),
    )
    logger.info(
        "Overview: %s registered, %s active, %s power users", stats.total_registered, active_now, len(power)
    )
    return stats
