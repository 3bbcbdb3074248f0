"""
Severity classification and the error feed shown on the analytics page.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .dataset import ensure_utc
from .models import ClassifiedError, ErrorFeedFilters, ErrorLogRecord, ResolutionStatus, Severity

logger = logging.getLogger(__name__)

ERROR_TYPE_SEVERITY: Mapping[str, Severity] = {
    "matching_error": Severity.ERROR,
    "api_error": Severity.ERROR,
    "timeout_error": Severity.ERROR,
    "parsing_error": Severity.WARNING,
    "validation_error": Severity.WARNING,
    "moderation_error": Severity.INFO,
    "info": Severity.INFO,
}
# Unknown error types are reported in the most severe bucket.
DEFAULT_SEVERITY = Severity.ERROR

DEFAULT_LOCALE = "pt-BR"
RELATIVE_TIME_LABELS: Dict[str, Dict[str, str]] = {
    "pt-BR": {"now": "agora", "days": "há {n}d", "hours": "há {n}h", "minutes": "há {n}min"},
    "en": {"now": "just now", "days": "{n}d ago", "hours": "{n}h ago", "minutes": "{n}min ago"},
}


def classify_error_type(error_type: Optional[str]) -> Severity:
    if error_type is None:
        return DEFAULT_SEVERITY
    return ERROR_TYPE_SEVERITY.get(error_type, DEFAULT_SEVERITY)


def error_types_for(severity: Severity) -> Tuple[Optional[List[str]], List[str]]:
    """
    ``(included, excluded)`` error types selecting ``severity`` in a query.

    ``included`` is ``None`` for the default severity, whose members are
    every type not mapped elsewhere, including unknown ones.
    """

    if severity is DEFAULT_SEVERITY:
        excluded = sorted(name for name, mapped in ERROR_TYPE_SEVERITY.items() if mapped is not severity)
        return None, excluded
    return sorted(name for name, mapped in ERROR_TYPE_SEVERITY.items() if mapped is severity), []


def _labels_for(locale: str) -> Dict[str, str]:
    if locale in RELATIVE_TIME_LABELS:
        return RELATIVE_TIME_LABELS[locale]
    language = locale.split("-")[0].lower()
    for tag, labels in RELATIVE_TIME_LABELS.items():
        if tag.split("-")[0].lower() == language:
            return labels
    return RELATIVE_TIME_LABELS[DEFAULT_LOCALE]


def format_relative_time(occurred_at: datetime, now: datetime, locale: str = DEFAULT_LOCALE) -> str:
    """
    Coarsest whole unit elapsed between ``occurred_at`` and ``now``.

    Units are floored, not rounded: 23h59m is "há 23h". Anything under a
    minute, including timestamps in the future, is "agora".
    """

    labels = _labels_for(locale)
    elapsed = ensure_utc(now) - ensure_utc(occurred_at)
    days = elapsed // timedelta(days=1)
    if days > 0:
        return labels["days"].format(n=days)
    hours = elapsed // timedelta(hours=1)
    if hours > 0:
        return labels["hours"].format(n=hours)
    minutes = elapsed // timedelta(minutes=1)
    if minutes > 0:
        return labels["minutes"].format(n=minutes)
    return labels["now"]


def classify_error(record: ErrorLogRecord, now: datetime, locale: str = DEFAULT_LOCALE) -> ClassifiedError:
    return ClassifiedError(
        id=record.id,
        severity=classify_error_type(record.error_type),
        message=record.error_message or record.error_type,
        occurred_at=ensure_utc(record.created_at),
        age_bucket_label=format_relative_time(record.created_at, now, locale),
        resolved=record.resolved,
        recovery_attempted=record.recovery_attempted,
        error_type=record.error_type,
        session_id=record.session_id,
        user_id=record.user_id,
        stack_trace=record.stack_trace,
        metadata=dict(record.metadata),
    )


def _matches(error: ClassifiedError, filters: ErrorFeedFilters) -> bool:
    if filters.severity is not None and error.severity is not filters.severity:
        return False
    if filters.status is ResolutionStatus.RESOLVED and not error.resolved:
        return False
    if filters.status is ResolutionStatus.UNRESOLVED and error.resolved:
        return False
    return True


def build_error_feed(
    records: Iterable[ErrorLogRecord],
    now: datetime,
    filters: Optional[ErrorFeedFilters] = None,
    locale: str = DEFAULT_LOCALE,
) -> List[ClassifiedError]:
    """
    Classify, filter and order error records newest first, keeping at most
    ``filters.limit`` entries.
    """

    filters = filters or ErrorFeedFilters()
    classified = [classify_error(record, now, locale) for record in records]
    selected = [error for error in classified if _matches(error, filters)]
    selected.sort(key=lambda error: error.occurred_at, reverse=True)
    feed = selected[: max(filters.limit, 0)]
    logger.info("Error feed: %s of %s records after filtering", len(feed), len(classified))
    return feed


def count_unresolved(records: Iterable[ErrorLogRecord], start: datetime, end: Optional[datetime] = None) -> int:
    start = ensure_utc(start)
    end = ensure_utc(end) if end is not None else None
    total = 0
    for record in records:
        created_at = ensure_utc(record.created_at)
        if record.resolved or created_at < start:
            continue
        if end is not None and created_at >= end:
            continue
        total += 1
    return total
