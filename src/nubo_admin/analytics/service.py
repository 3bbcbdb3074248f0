from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from .activity import build_overview, weekly_activity
from .config import AnalyticsConfig
from .dataset import AnalyticsDataset, ensure_utc, start_of_day
from .engagement import rank_dataset
from .errors import build_error_feed, error_types_for
from .exceptions import DecodeFailure, UpstreamQueryFailure
from .funnel import DEFAULT_FUNNEL, FunnelStageDefinition, build_funnel
from .models import (
    ActivityPoint,
    AffiliateUser,
    ClassifiedError,
    EngagementScore,
    ErrorFeedFilters,
    ErrorLogRecord,
    FunnelStage,
    InfluencerDashboardStats,
    InfluencerStats,
    OpportunityTypes,
    OverviewStats,
    PartnerStats,
    RankedGroup,
    ResolutionStatus,
)
from .opportunities import build_opportunity_types
from .partners import (
    affiliate_users,
    compute_influencer_dashboard,
    compute_influencer_stats,
    compute_partner_stats,
)
from .rankings import get_dimension, rank_dimension
from .repository import AnalyticsDataRepository

logger = logging.getLogger(__name__)


class AnalyticsService:
    """
    Runs the data source queries for one analytics request and hands the
    materialised rows to the aggregators.

    Query failures propagate as :class:`UpstreamQueryFailure`; only the
    overview degrades when the error log cannot be read.
    """

    def __init__(
        self,
        repository: AnalyticsDataRepository,
        config: Optional[AnalyticsConfig] = None,
        funnel_definitions: Sequence[FunnelStageDefinition] = DEFAULT_FUNNEL,
    ) -> None:
        self.repository = repository
        self.config = config or AnalyticsConfig()
        self.funnel_definitions = funnel_definitions

    @property
    def source(self) -> str:
        return self.repository.source_name

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now is not None else datetime.now(timezone.utc)

    def _lifecycle_dataset(self) -> AnalyticsDataset:
        return AnalyticsDataset(
            profiles=self.repository.load_profiles(),
            preferences=self.repository.load_preferences(),
            messages=self.repository.load_messages(),
            favorites=self.repository.load_favorites(),
        )

    def funnel(self, include_details: bool = False) -> List[FunnelStage]:
        dataset = self._lifecycle_dataset()
        return build_funnel(dataset, self.funnel_definitions, include_details=include_details)

    def error_feed(self, filters: ErrorFeedFilters, now: Optional[datetime] = None) -> List[ClassifiedError]:
        error_types, excluded_types = None, ()
        if filters.severity is not None:
            error_types, excluded_types = error_types_for(filters.severity)
        resolved = None
        if filters.status is not None:
            resolved = filters.status is ResolutionStatus.RESOLVED
        records = self.repository.load_errors(
            resolved=resolved,
            error_types=error_types,
            excluded_types=excluded_types,
            limit=filters.limit,
        )
        return build_error_feed(records, self._now(now), filters, locale=self.config.feed.locale)

    def top_users(self) -> List[EngagementScore]:
        dataset = AnalyticsDataset(
            profiles=self.repository.load_profiles(),
            messages=self.repository.load_messages(),
            favorites=self.repository.load_favorites(),
        )
        return rank_dataset(dataset)

    def rankings(self, dimension: str) -> List[RankedGroup]:
        get_dimension(dimension)
        if dimension == "location":
            dataset = AnalyticsDataset(profiles=self.repository.load_profiles())
        else:
            dataset = AnalyticsDataset(preferences=self.repository.load_preferences())
        return rank_dimension(dataset, dimension)

    def partner_stats(self) -> PartnerStats:
        partners = self.repository.load_partners()
        clicks = self.repository.load_partner_clicks()
        return compute_partner_stats(partners, clicks)

    def influencers(self) -> List[InfluencerStats]:
        return compute_influencer_stats(self.repository.load_influencers(), self.repository.load_profiles())

    def influencer_dashboard(self) -> InfluencerDashboardStats:
        return compute_influencer_dashboard(self.influencers())

    def affiliates(self, code: str) -> List[AffiliateUser]:
        return affiliate_users(self.repository.load_affiliates(code), code)

    def opportunities(self) -> OpportunityTypes:
        return build_opportunity_types(
            self.repository.load_preferences(),
            self.repository.load_vacancies(),
            sisu_opportunities=self.repository.count_opportunities("sisu"),
            prouni_opportunities=self.repository.count_opportunities("prouni"),
        )

    def activity(self, now: Optional[datetime] = None) -> List[ActivityPoint]:
        now = self._now(now)
        tz_name = self.config.feed.timezone
        since = start_of_day(now, tz_name) - timedelta(days=6)
        messages = self.repository.load_messages(since=since)
        return weekly_activity(messages, now, tz_name)

    def overview(self, now: Optional[datetime] = None) -> OverviewStats:
        now = self._now(now)
        dataset = self._lifecycle_dataset()
        errors = self._errors_or_none(start_of_day(now, self.config.feed.timezone) - timedelta(days=1))
        return build_overview(dataset, now, errors, tz_name=self.config.feed.timezone)

    def _errors_or_none(self, since: datetime) -> Optional[Sequence[ErrorLogRecord]]:
        try:
            return self.repository.load_errors(since=since)
        except (UpstreamQueryFailure, DecodeFailure) as exc:
            logger.warning("Error log unavailable, overview reports errors as unknown: %s", exc)
            return None

