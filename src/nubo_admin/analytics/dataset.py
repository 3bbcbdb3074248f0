from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .models import ChatMessage, FavoriteRecord, FunnelUser, UserPreference, UserProfile


def coerce_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        return ZoneInfo("UTC")


def ensure_utc(dt: datetime) -> datetime:
    """
    Naive timestamps from the database are stored in UTC.
    """

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def start_of_day(moment: datetime, tz_name: str) -> datetime:
    tz = coerce_timezone(tz_name)
    local = ensure_utc(moment).astimezone(tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def distinct_in_order(values: Iterable[Optional[str]]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return list(seen)


@dataclass
class AnalyticsDataset:
    """
    Materialised user lifecycle rows shared by the funnel and ranking
    aggregators. Messages and favorites are kept in chronological order;
    profiles keep the order the data source returned.
    """

    profiles: Sequence[UserProfile] = field(default_factory=tuple)
    preferences: Sequence[UserPreference] = field(default_factory=tuple)
    messages: Sequence[ChatMessage] = field(default_factory=tuple)
    favorites: Sequence[FavoriteRecord] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self.profiles = tuple(self.profiles)
        self.preferences = tuple(self.preferences)
        self.messages = tuple(sorted(self.messages, key=lambda message: ensure_utc(message.created_at)))
        self.favorites = tuple(sorted(self.favorites, key=lambda favorite: ensure_utc(favorite.created_at)))

    def profile_ids(self) -> List[str]:
        return distinct_in_order(profile.id for profile in self.profiles)

    def onboarded_user_ids(self) -> List[str]:
        return distinct_in_order(profile.id for profile in self.profiles if profile.onboarding_completed)

    def message_user_ids(self, workflows: Optional[Iterable[str]] = None) -> List[str]:
        allowed = set(workflows) if workflows is not None else None
        return distinct_in_order(
            message.user_id
            for message in self.messages
            if allowed is None or message.workflow in allowed
        )

    def preference_user_ids(self) -> List[str]:
        return distinct_in_order(preference.user_id for preference in self.preferences)

    def matched_user_ids(self) -> List[str]:
        return distinct_in_order(
            preference.user_id for preference in self.preferences if preference.workflow_data
        )

    def favorite_user_ids(self) -> List[str]:
        return distinct_in_order(favorite.user_id for favorite in self.favorites)

    def message_counts(self) -> Counter:
        return Counter(message.user_id for message in self.messages if message.user_id)

    def favorite_counts(self) -> Counter:
        return Counter(favorite.user_id for favorite in self.favorites if favorite.user_id)

    def message_times_by_user(self) -> Dict[str, List[datetime]]:
        times: Dict[str, List[datetime]] = defaultdict(list)
        for message in self.messages:
            if message.user_id:
                times[message.user_id].append(ensure_utc(message.created_at))
        return dict(times)

    def funnel_users(self, user_ids: Sequence[str]) -> List[FunnelUser]:
        """
        Profile details for ``user_ids``; ids without a profile are skipped.
        """

        profiles = {profile.id: profile for profile in self.profiles}
        interests = {
            preference.user_id: tuple(preference.course_interest)
            for preference in self.preferences
            if preference.course_interest
        }
        users: List[FunnelUser] = []
        for user_id in user_ids:
            profile = profiles.get(user_id)
            if profile is None:
                continue
            users.append(
                FunnelUser(
                    id=profile.id,
                    full_name=profile.full_name,
                    phone=profile.phone,
                    city=profile.city,
                    created_at=profile.created_at,
                    course_interest=interests.get(profile.id),
                )
            )
        return users
