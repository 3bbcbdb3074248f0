from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence

from .dataset import AnalyticsDataset
from .models import ANONYMOUS_USER_NAME, EngagementScore, PowerUser, UserProfile

logger = logging.getLogger(__name__)

MESSAGE_WEIGHT = 1
FAVORITE_WEIGHT = 3
SESSION_GAP = timedelta(minutes=30)
POWER_USER_MIN_SESSIONS = 2


def engagement_score(messages: int, favorites: int) -> int:
    return messages * MESSAGE_WEIGHT + favorites * FAVORITE_WEIGHT


def count_sessions(timestamps: Sequence[datetime], gap: timedelta = SESSION_GAP) -> int:
    """
    Number of sessions in ``timestamps``; a pause longer than ``gap``
    between two consecutive messages starts a new session.
    """

    if not timestamps:
        return 0
    ordered = sorted(timestamps)
    sessions = 1
    for previous, current in zip(ordered, ordered[1:]):
        if current - previous > gap:
            sessions += 1
    return sessions


def rank_users(
    profiles: Sequence[UserProfile],
    message_counts: Mapping[str, int],
    favorite_counts: Mapping[str, int],
    session_counts: Optional[Mapping[str, int]] = None,
) -> List[EngagementScore]:
    """
    Score every profile and order them by score, highest first.

    Users without any activity are kept with a score of 0. Equal scores
    keep the order of ``profiles``. Sessions are reported but do not enter
    the score.
    """

    sessions = session_counts or {}
    scores = []
    for profile in profiles:
        messages = message_counts.get(profile.id, 0)
        favorites = favorite_counts.get(profile.id, 0)
        scores.append(
            EngagementScore(
                user_id=profile.id,
                name=profile.full_name or ANONYMOUS_USER_NAME,
                messages=messages,
                favorites=favorites,
                score=engagement_score(messages, favorites),
                sessions=sessions.get(profile.id, 0),
            )
        )
    return sorted(scores, key=lambda entry: entry.score, reverse=True)


def rank_dataset(dataset: AnalyticsDataset) -> List[EngagementScore]:
    session_counts = {
        user_id: count_sessions(times) for user_id, times in dataset.message_times_by_user().items()
    }
    ranked = rank_users(
        dataset.profiles,
        dataset.message_counts(),
        dataset.favorite_counts(),
        session_counts,
    )
    logger.info("Ranked %s users by engagement", len(ranked))
    return ranked


def power_users(
    message_times: Mapping[str, Sequence[datetime]],
    names: Mapping[str, Optional[str]],
    min_sessions: int = POWER_USER_MIN_SESSIONS,
) -> List[PowerUser]:
    """
    Users with at least ``min_sessions`` sessions, most sessions first.
    """

    result: List[PowerUser] = []
    for user_id, times in message_times.items():
        sessions = count_sessions(times)
        if sessions >= min_sessions:
            result.append(
                PowerUser(user_id=user_id, name=names.get(user_id) or ANONYMOUS_USER_NAME, sessions=sessions)
            )
    return sorted(result, key=lambda user: user.sessions, reverse=True)


def profile_names(profiles: Sequence[UserProfile]) -> Dict[str, Optional[str]]:
    return {profile.id: profile.full_name for profile in profiles}
