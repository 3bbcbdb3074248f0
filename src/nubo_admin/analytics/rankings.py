"""
Group-by-key rankings (where students live, where they want to study, what
they want to study).
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .dataset import AnalyticsDataset
from .exceptions import UnknownDimension
from .models import RankedGroup

logger = logging.getLogger(__name__)

_STATE_SUFFIX = re.compile(r"\s*-\s*[A-Z]{2}$", re.IGNORECASE)
PROGRAM_DISPLAY_NAMES: Mapping[str, str] = {"sisu": "SISU", "prouni": "ProUni", "both": "Ambos"}


def normalize_city(city: Optional[str]) -> str:
    """
    "são paulo - SP" and "São Paulo" both become "São Paulo".
    """

    if not city:
        return ""
    normalized = _STATE_SUFFIX.sub("", city.strip())
    return " ".join(word[:1].upper() + word[1:].lower() for word in normalized.split(" "))


def percentage(count: int, total: int) -> int:
    if total <= 0:
        return 0
    return math.floor(count / total * 100 + 0.5)


def rank_weighted(observations: Iterable[Tuple[Optional[str], int]]) -> List[RankedGroup]:
    """
    Sum the weight of each non-empty key and order groups by total, highest
    first.

    Groups with equal totals keep the order in which their key was first
    seen. Percentages are relative to the total over all groups.
    """

    counts: Dict[str, int] = {}
    for key, weight in observations:
        if key:
            counts[key] = counts.get(key, 0) + weight
    total = sum(counts.values())
    groups = [RankedGroup(key=key, count=count, percentage=percentage(count, total)) for key, count in counts.items()]
    return sorted(groups, key=lambda group: group.count, reverse=True)


def rank_keys(keys: Iterable[Optional[str]]) -> List[RankedGroup]:
    return rank_weighted((key, 1) for key in keys)


def _profile_cities(dataset: AnalyticsDataset) -> Iterable[str]:
    return (normalize_city(profile.city) for profile in dataset.profiles)


def _preferred_locations(dataset: AnalyticsDataset) -> Iterable[str]:
    return (normalize_city(preference.location_preference) for preference in dataset.preferences)


def _course_interests(dataset: AnalyticsDataset) -> Iterable[str]:
    for preference in dataset.preferences:
        for course in preference.course_interest:
            yield course.strip() if course else ""


def program_display_name(program: Optional[str]) -> Optional[str]:
    if not program:
        return program
    return PROGRAM_DISPLAY_NAMES.get(program, program)


def _program_preferences(dataset: AnalyticsDataset) -> Iterable[Optional[str]]:
    return (program_display_name(preference.program_preference) for preference in dataset.preferences)


@dataclass(frozen=True)
class RankingDimension:
    name: str
    extract: Callable[[AnalyticsDataset], Iterable[Optional[str]]]
    display_limit: Optional[int] = None


RANKING_DIMENSIONS: Dict[str, RankingDimension] = {
    dimension.name: dimension
    for dimension in (
        RankingDimension("location", _profile_cities, display_limit=10),
        RankingDimension("location_preference", _preferred_locations, display_limit=8),
        RankingDimension("courses", _course_interests, display_limit=6),
        RankingDimension("preferences", _program_preferences, display_limit=5),
    )
}


def get_dimension(name: str) -> RankingDimension:
    try:
        return RANKING_DIMENSIONS[name]
    except KeyError:
        raise UnknownDimension(
            f"unknown ranking dimension {name!r}; expected one of {sorted(RANKING_DIMENSIONS)}"
        ) from None


def rank_dimension(dataset: AnalyticsDataset, name: str, apply_limit: bool = True) -> List[RankedGroup]:
    dimension = get_dimension(name)
    ranked = rank_keys(dimension.extract(dataset))
    if apply_limit and dimension.display_limit is not None:
        ranked = ranked[: dimension.display_limit]
    logger.info("Ranking %s: %s groups", name, len(ranked))
    return ranked
