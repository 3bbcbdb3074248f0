from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional, Sequence


ANONYMOUS_USER_NAME = "Usuário Anônimo"
NOT_AVAILABLE = "N/A"


class Severity(str, enum.Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ResolutionStatus(str, enum.Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


# ---------------------------------------------------------------------------
# Source rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UserProfile:
    """
    A registered student.

    ``referral_code`` is the influencer code captured from the ``?ref=`` link
    at signup; ``phone`` and ``last_sign_in_at`` come from the auth records
    when the data source is able to join them.
    """

    id: str
    full_name: Optional[str] = None
    city: Optional[str] = None
    age: Optional[int] = None
    created_at: Optional[datetime] = None
    onboarding_completed: bool = False
    referral_code: Optional[str] = None
    phone: Optional[str] = None
    last_sign_in_at: Optional[datetime] = None


@dataclass(frozen=True)
class UserPreference:
    user_id: str
    course_interest: Sequence[str] = field(default_factory=tuple)
    program_preference: Optional[str] = None
    location_preference: Optional[str] = None
    workflow_data: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class ChatMessage:
    id: str
    user_id: Optional[str]
    created_at: datetime
    sender: Optional[str] = None
    workflow: Optional[str] = None


@dataclass(frozen=True)
class FavoriteRecord:
    id: str
    user_id: str
    created_at: datetime
    course_id: Optional[str] = None
    partner_id: Optional[str] = None


@dataclass(frozen=True)
class PartnerRecord:
    id: str
    name: str


@dataclass(frozen=True)
class PartnerClick:
    partner_id: str
    user_id: Optional[str]
    clicks: int = 1


@dataclass(frozen=True)
class InfluencerRecord:
    id: str
    name: str
    code: str


@dataclass(frozen=True)
class OpportunityRecord:
    id: str
    opportunity_type: Optional[str] = None


@dataclass(frozen=True)
class VacancyRecord:
    """
    Idle SISU seats of one offer, grouped by competition modality.
    """

    id: str
    modality: Optional[str]
    idle_seats: int


@dataclass(frozen=True)
class ErrorLogRecord:
    """
    A row of ``agent_errors`` as written by the chatbot runtime.

    ``error_type`` is loosely typed upstream; classification into a
    :class:`Severity` happens in :mod:`errors`.
    """

    id: str
    error_type: str
    created_at: datetime
    error_message: Optional[str] = None
    resolved: bool = False
    recovery_attempted: bool = False
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    stack_trace: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Derived results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FunnelUser:
    id: str
    full_name: Optional[str]
    phone: Optional[str]
    city: Optional[str]
    created_at: Optional[datetime]
    course_interest: Optional[Sequence[str]]


@dataclass(frozen=True)
class FunnelStage:
    name: str
    count: int
    description: str
    user_ids: Optional[Sequence[str]] = None
    users: Optional[Sequence[FunnelUser]] = None


@dataclass(frozen=True)
class EngagementScore:
    user_id: str
    name: str
    messages: int
    favorites: int
    score: int
    sessions: int = 0


@dataclass(frozen=True)
class ClassifiedError:
    id: str
    severity: Severity
    message: str
    occurred_at: datetime
    age_bucket_label: str
    resolved: bool
    recovery_attempted: bool
    error_type: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    stack_trace: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorFeedFilters:
    """
    Conjunctive filters for the error feed. ``None`` means unfiltered.
    """

    severity: Optional[Severity] = None
    status: Optional[ResolutionStatus] = None
    limit: int = 10


@dataclass(frozen=True)
class RankedGroup:
    key: str
    count: int
    percentage: int = 0


@dataclass(frozen=True)
class PartnerStats:
    total_partners: int
    total_clicks: int
    best_partner_name: str
    unique_users: int
    clicks_per_partner: float
    clicks_per_user: float


@dataclass(frozen=True)
class AffiliateUser:
    id: str
    full_name: Optional[str]
    phone: Optional[str]
    age: Optional[int]
    city: Optional[str]
    created_at: Optional[datetime]
    last_sign_in_at: Optional[datetime]


@dataclass(frozen=True)
class InfluencerStats:
    influencer_id: str
    name: str
    code: str
    affiliate_count: int


@dataclass(frozen=True)
class InfluencerDashboardStats:
    total_affiliates: int
    best_influencer: str
    avg_affiliates: float


@dataclass(frozen=True)
class ActivityPoint:
    day: date
    weekday_label: str
    messages: int
    users: int


@dataclass(frozen=True)
class PowerUser:
    user_id: str
    name: str
    sessions: int


@dataclass(frozen=True)
class OpportunityTypes:
    program_preferences: Sequence[RankedGroup]
    idle_seats_total: int
    idle_seats_by_modality: Sequence[RankedGroup]
    sisu_opportunities: int
    prouni_opportunities: int


@dataclass(frozen=True)
class OverviewStats:
    """
    Headline cards of the analytics home page.

    ``errors_today``/``errors_change`` are ``None`` when the error log could
    not be read; every other field is fail-fast.
    """

    total_registered: int
    active_users: int
    active_users_with_messages: int
    catalog_users: int
    active_users_change: int
    catalog_users_change: int
    total_messages: int
    messages_change: int
    total_favorites: int
    favorites_change: int
    errors_today: Optional[int]
    errors_change: Optional[int]
    power_users: int
    power_users_change: int
    power_users_list: Sequence[PowerUser] = field(default_factory=list)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_payload(obj: Any) -> Any:
    """
    Convert result dataclasses into a JSON-serialisable structure.

    Field names are emitted in camelCase for the dashboard frontend; enums
    become their values and datetimes ISO strings.
    """

    if isinstance(obj, enum.Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if hasattr(obj, "__dataclass_fields__"):
        return {_camel(name): to_payload(getattr(obj, name)) for name in obj.__dataclass_fields__}
    if isinstance(obj, dict):
        return {key: to_payload(value) for key, value in obj.items()}
    if isinstance(obj, Iterable) and not isinstance(obj, (str, bytes)):
        return [to_payload(item) for item in obj]
    return obj
