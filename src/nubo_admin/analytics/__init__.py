"""
Analytics engine behind the Nubo admin dashboard.

The package turns raw product rows (profiles, chat messages, favorites,
partner clicks, referral signups and agent error logs) into the aggregates
shown by the admin screens: the conversion funnel, engagement ranking,
partner and influencer statistics, location rankings and the error feed.
"""

from .exceptions import (  # noqa: F401
    AnalyticsError,
    DataSourceUnavailable,
    DecodeFailure,
    UnknownDimension,
    UpstreamQueryFailure,
)
from .models import (  # noqa: F401
    ActivityPoint,
    AffiliateUser,
    ChatMessage,
    ClassifiedError,
    EngagementScore,
    ErrorFeedFilters,
    ErrorLogRecord,
    FavoriteRecord,
    FunnelStage,
    InfluencerDashboardStats,
    InfluencerRecord,
    InfluencerStats,
    OpportunityRecord,
    OpportunityTypes,
    OverviewStats,
    PartnerClick,
    PartnerRecord,
    PartnerStats,
    PowerUser,
    RankedGroup,
    ResolutionStatus,
    Severity,
    UserPreference,
    UserProfile,
    VacancyRecord,
)
from .repository import (  # noqa: F401
    AnalyticsDataRepository,
    InMemoryAnalyticsRepository,
    SQLAnalyticsRepository,
    build_repository_from_env,
)
from .service import AnalyticsService  # noqa: F401
