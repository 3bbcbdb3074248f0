from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError

from .config import AnalyticsConfig, load_analytics_config
from .dataset import ensure_utc
from .exceptions import DecodeFailure, UpstreamQueryFailure
from .models import (
    ChatMessage,
    ErrorLogRecord,
    FavoriteRecord,
    InfluencerRecord,
    OpportunityRecord,
    PartnerClick,
    PartnerRecord,
    UserPreference,
    UserProfile,
    VacancyRecord,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AnalyticsDataRepository:
    """
    Read-only access to the rows the analytics engine aggregates.

    Implementations must raise :class:`UpstreamQueryFailure` when a query
    fails and :class:`DecodeFailure` when a row cannot be mapped to its
    record type. A failed query is never reported as an empty result.
    """

    source_name = "external"

    def load_profiles(self) -> Sequence[UserProfile]:
        raise NotImplementedError

    def load_preferences(self) -> Sequence[UserPreference]:
        raise NotImplementedError

    def load_messages(self, since: Optional[datetime] = None) -> Sequence[ChatMessage]:
        raise NotImplementedError

    def load_favorites(self, since: Optional[datetime] = None) -> Sequence[FavoriteRecord]:
        raise NotImplementedError

    def load_partners(self) -> Sequence[PartnerRecord]:
        raise NotImplementedError

    def load_partner_clicks(self) -> Sequence[PartnerClick]:
        raise NotImplementedError

    def load_influencers(self) -> Sequence[InfluencerRecord]:
        raise NotImplementedError

    def load_affiliates(self, code: str) -> Sequence[UserProfile]:
        raise NotImplementedError

    def load_errors(
        self,
        since: Optional[datetime] = None,
        resolved: Optional[bool] = None,
        error_types: Optional[Sequence[str]] = None,
        excluded_types: Sequence[str] = (),
        limit: Optional[int] = None,
    ) -> Sequence[ErrorLogRecord]:
        """
        Error log rows, newest first.

        ``error_types`` keeps only the listed types when given;
        ``excluded_types`` drops the listed ones but keeps rows without a
        type. ``limit`` caps the number of rows read.
        """
        raise NotImplementedError

    def load_vacancies(self) -> Sequence[VacancyRecord]:
        """SISU offers with at least one idle seat."""
        raise NotImplementedError

    def count_opportunities(self, opportunity_type: str) -> int:
        raise NotImplementedError


class SQLAnalyticsRepository(AnalyticsDataRepository):
    """
    Load rows from the product database.

    Expected tables:
      - user_profiles(id, full_name, city, age, created_at, onboarding_completed,
        referral_code, phone, last_sign_in_at)
      - user_preferences(user_id, course_interest, program_preference,
        location_preference, workflow_data, updated_at)
      - chat_messages(id, user_id, created_at, sender, workflow)
      - user_favorites(id, user_id, created_at, course_id, partner_id)
      - partners(id, name)
      - partners_click(partner_id, user_id, clicks)
      - influencers(id, name, code)
      - agent_errors(id, error_type, error_message, created_at, resolved,
        recovery_attempted, session_id, user_id, stack_trace, metadata)

    Large tables are read page by page so row caps on the server side never
    truncate an aggregation silently.
    """

    source_name = "database"

    def __init__(self, engine: Engine, page_size: int = 1000):
        self.engine = engine
        self.page_size = page_size

    def load_profiles(self) -> Sequence[UserProfile]:
        query = """
            SELECT id, full_name, city, age, created_at, onboarding_completed,
                   referral_code, phone, last_sign_in_at
            FROM user_profiles
            ORDER BY created_at ASC, id ASC
        """
        return self._fetch_all("user_profiles", query, {}, self._row_to_profile)

    def load_preferences(self) -> Sequence[UserPreference]:
        query = """
            SELECT user_id, course_interest, program_preference, location_preference,
                   workflow_data, updated_at
            FROM user_preferences
            ORDER BY user_id ASC, id ASC
        """
        return self._fetch_all("user_preferences", query, {}, self._row_to_preference)

    def load_messages(self, since: Optional[datetime] = None) -> Sequence[ChatMessage]:
        query = """
            SELECT id, user_id, created_at, sender, workflow
            FROM chat_messages
            {where}
            ORDER BY created_at ASC, id ASC
        """
        where, params = _since_filter(since)
        return self._fetch_all("chat_messages", query.format(where=where), params, self._row_to_message)

    def load_favorites(self, since: Optional[datetime] = None) -> Sequence[FavoriteRecord]:
        query = """
            SELECT id, user_id, created_at, course_id, partner_id
            FROM user_favorites
            {where}
            ORDER BY created_at ASC, id ASC
        """
        where, params = _since_filter(since)
        return self._fetch_all("user_favorites", query.format(where=where), params, self._row_to_favorite)

    def load_partners(self) -> Sequence[PartnerRecord]:
        query = "SELECT id, name FROM partners ORDER BY name ASC, id ASC"
        return self._fetch_all("partners", query, {}, self._row_to_partner)

    def load_partner_clicks(self) -> Sequence[PartnerClick]:
        query = """
            SELECT partner_id, user_id, COALESCE(clicks, 0) AS clicks
            FROM partners_click
            ORDER BY partner_id ASC, id ASC
        """
        return self._fetch_all("partners_click", query, {}, self._row_to_click)

    def load_influencers(self) -> Sequence[InfluencerRecord]:
        query = "SELECT id, name, code FROM influencers ORDER BY name ASC, id ASC"
        return self._fetch_all("influencers", query, {}, self._row_to_influencer)

    def load_affiliates(self, code: str) -> Sequence[UserProfile]:
        query = """
            SELECT id, full_name, city, age, created_at, onboarding_completed,
                   referral_code, phone, last_sign_in_at
            FROM user_profiles
            WHERE referral_code = :code
            ORDER BY created_at DESC, id ASC
        """
        return self._fetch_all("user_profiles", query, {"code": code}, self._row_to_profile)

    def load_errors(
        self,
        since: Optional[datetime] = None,
        resolved: Optional[bool] = None,
        error_types: Optional[Sequence[str]] = None,
        excluded_types: Sequence[str] = (),
        limit: Optional[int] = None,
    ) -> Sequence[ErrorLogRecord]:
        query = """
            SELECT id, error_type, error_message, created_at, resolved, recovery_attempted,
                   session_id, user_id, stack_trace, metadata
            FROM agent_errors
            {where}
            ORDER BY created_at DESC, id ASC
        """
        conditions: List[str] = []
        params: Dict[str, Any] = {}
        expanding: List[str] = []
        if since is not None:
            conditions.append("created_at >= :since")
            params["since"] = ensure_utc(since)
        if resolved is not None:
            conditions.append("resolved = :resolved")
            params["resolved"] = resolved
        if error_types is not None:
            conditions.append("error_type IN :error_types")
            params["error_types"] = list(error_types)
            expanding.append("error_types")
        if excluded_types:
            conditions.append("(error_type IS NULL OR error_type NOT IN :excluded_types)")
            params["excluded_types"] = list(excluded_types)
            expanding.append("excluded_types")
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return self._fetch_all(
            "agent_errors",
            query.format(where=where),
            params,
            self._row_to_error,
            expanding=expanding,
            max_rows=limit,
        )

    def load_vacancies(self) -> Sequence[VacancyRecord]:
        query = """
            SELECT id, ds_mod_concorrencia, vagas_ociosas_2025
            FROM opportunitiessisuvacancies
            WHERE vagas_ociosas_2025 IS NOT NULL AND vagas_ociosas_2025 > 0
            ORDER BY id ASC
        """
        return self._fetch_all("opportunitiessisuvacancies", query, {}, self._row_to_vacancy)

    def count_opportunities(self, opportunity_type: str) -> int:
        query = "SELECT COUNT(*) FROM opportunities WHERE opportunity_type = :opportunity_type"
        try:
            with self.engine.connect() as connection:
                total = connection.execute(text(query), {"opportunity_type": opportunity_type}).scalar()
        except SQLAlchemyError as exc:
            logger.warning("Query against opportunities failed: %s", exc)
            raise UpstreamQueryFailure("opportunities", str(exc)) from exc
        return int(total or 0)

    def _fetch_all(
        self,
        source: str,
        query: str,
        params: Dict[str, Any],
        decode: Callable[[Row], T],
        expanding: Sequence[str] = (),
        max_rows: Optional[int] = None,
    ) -> Sequence[T]:
        """
        Read every row of ``query`` page by page, or at most ``max_rows``.
        """

        statement = text(f"{query.rstrip()}\nLIMIT :limit OFFSET :offset")
        if expanding:
            statement = statement.bindparams(*(bindparam(name, expanding=True) for name in expanding))
        if max_rows is not None and max_rows <= 0:
            return ()
        records: List[T] = []
        offset = 0
        try:
            with self.engine.connect() as connection:
                while True:
                    page_size = self.page_size
                    if max_rows is not None:
                        page_size = min(page_size, max_rows - len(records))
                    page = connection.execute(
                        statement, {**params, "limit": page_size, "offset": offset}
                    ).fetchall()
                    records.extend(self._decode(source, row, decode) for row in page)
                    if len(page) < page_size or (max_rows is not None and len(records) >= max_rows):
                        break
                    offset += page_size
        except SQLAlchemyError as exc:
            logger.warning("Query against %s failed: %s", source, exc)
            raise UpstreamQueryFailure(source, str(exc)) from exc
        logger.info("Loaded %s rows from %s", len(records), source)
        return tuple(records)

    @staticmethod
    def _decode(source: str, row: Row, decode: Callable[[Row], T]) -> T:
        try:
            return decode(row)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise DecodeFailure(source, f"cannot decode row: {exc}") from exc

    @staticmethod
    def _row_to_profile(row: Row) -> UserProfile:
        return UserProfile(
            id=str(row.id),
            full_name=row.full_name,
            city=row.city,
            age=None if row.age is None else int(row.age),
            created_at=_coerce_datetime(row.created_at),
            onboarding_completed=bool(row.onboarding_completed),
            referral_code=row.referral_code,
            phone=row.phone,
            last_sign_in_at=_coerce_datetime(row.last_sign_in_at),
        )

    @staticmethod
    def _row_to_preference(row: Row) -> UserPreference:
        interests = _coerce_json(row.course_interest, default=[])
        if not isinstance(interests, (list, tuple)):
            raise ValueError("course_interest must be an array")
        workflow_data = _coerce_json(row.workflow_data, default={})
        return UserPreference(
            user_id=str(row.user_id),
            course_interest=tuple(str(item) for item in interests if item is not None),
            program_preference=row.program_preference,
            location_preference=row.location_preference,
            workflow_data=workflow_data if isinstance(workflow_data, Mapping) else {"value": workflow_data},
            updated_at=_coerce_datetime(row.updated_at),
        )

    @staticmethod
    def _row_to_message(row: Row) -> ChatMessage:
        created_at = _coerce_datetime(row.created_at)
        if created_at is None:
            raise ValueError("chat message without created_at")
        return ChatMessage(
            id=str(row.id),
            user_id=None if row.user_id is None else str(row.user_id),
            created_at=created_at,
            sender=row.sender,
            workflow=row.workflow,
        )

    @staticmethod
    def _row_to_favorite(row: Row) -> FavoriteRecord:
        created_at = _coerce_datetime(row.created_at)
        if created_at is None:
            raise ValueError("favorite without created_at")
        return FavoriteRecord(
            id=str(row.id),
            user_id=str(row.user_id),
            created_at=created_at,
            course_id=row.course_id,
            partner_id=row.partner_id,
        )

    @staticmethod
    def _row_to_partner(row: Row) -> PartnerRecord:
        return PartnerRecord(id=str(row.id), name=str(row.name))

    @staticmethod
    def _row_to_click(row: Row) -> PartnerClick:
        return PartnerClick(
            partner_id=str(row.partner_id),
            user_id=None if row.user_id is None else str(row.user_id),
            clicks=int(row.clicks),
        )

    @staticmethod
    def _row_to_influencer(row: Row) -> InfluencerRecord:
        return InfluencerRecord(id=str(row.id), name=str(row.name), code=str(row.code))

    @staticmethod
    def _row_to_vacancy(row: Row) -> VacancyRecord:
        return VacancyRecord(
            id=str(row.id),
            modality=row.ds_mod_concorrencia,
            idle_seats=int(row.vagas_ociosas_2025),
        )

    @staticmethod
    def _row_to_error(row: Row) -> ErrorLogRecord:
        created_at = _coerce_datetime(row.created_at)
        if created_at is None:
            raise ValueError("error log without created_at")
        metadata = _coerce_json(row.metadata, default={})
        return ErrorLogRecord(
            id=str(row.id),
            error_type=str(row.error_type),
            error_message=row.error_message,
            created_at=created_at,
            resolved=bool(row.resolved),
            recovery_attempted=bool(row.recovery_attempted),
            session_id=row.session_id,
            user_id=None if row.user_id is None else str(row.user_id),
            stack_trace=row.stack_trace,
            metadata=metadata if isinstance(metadata, Mapping) else {"value": metadata},
        )


def _since_filter(since: Optional[datetime]) -> Tuple[str, Dict[str, Any]]:
    if since is None:
        return "", {}
    return "WHERE created_at >= :since", {"since": ensure_utc(since)}


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise TypeError(f"expected a timestamp, got {type(value).__name__}")
    return ensure_utc(value)


def _coerce_json(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        return json.loads(value)
    return value


@dataclass
class InMemoryAnalyticsRepository(AnalyticsDataRepository):
    """
    Serve already materialised rows, e.g. a snapshot exported from the
    database or fixtures in tests.
    """

    source_name = "memory"

    profiles: Sequence[UserProfile] = field(default_factory=tuple)
    preferences: Sequence[UserPreference] = field(default_factory=tuple)
    messages: Sequence[ChatMessage] = field(default_factory=tuple)
    favorites: Sequence[FavoriteRecord] = field(default_factory=tuple)
    partners: Sequence[PartnerRecord] = field(default_factory=tuple)
    partner_clicks: Sequence[PartnerClick] = field(default_factory=tuple)
    influencers: Sequence[InfluencerRecord] = field(default_factory=tuple)
    errors: Sequence[ErrorLogRecord] = field(default_factory=tuple)
    vacancies: Sequence[VacancyRecord] = field(default_factory=tuple)
    opportunities: Sequence[OpportunityRecord] = field(default_factory=tuple)

    def load_profiles(self) -> Sequence[UserProfile]:
        return tuple(self.profiles)

    def load_preferences(self) -> Sequence[UserPreference]:
        return tuple(self.preferences)

    def load_messages(self, since: Optional[datetime] = None) -> Sequence[ChatMessage]:
        rows = sorted(self.messages, key=lambda message: ensure_utc(message.created_at))
        if since is not None:
            rows = [message for message in rows if ensure_utc(message.created_at) >= ensure_utc(since)]
        return tuple(rows)

    def load_favorites(self, since: Optional[datetime] = None) -> Sequence[FavoriteRecord]:
        rows = sorted(self.favorites, key=lambda favorite: ensure_utc(favorite.created_at))
        if since is not None:
            rows = [favorite for favorite in rows if ensure_utc(favorite.created_at) >= ensure_utc(since)]
        return tuple(rows)

    def load_partners(self) -> Sequence[PartnerRecord]:
        return tuple(self.partners)

    def load_partner_clicks(self) -> Sequence[PartnerClick]:
        return tuple(self.partner_clicks)

    def load_influencers(self) -> Sequence[InfluencerRecord]:
        return tuple(self.influencers)

    def load_affiliates(self, code: str) -> Sequence[UserProfile]:
        return tuple(profile for profile in self.profiles if profile.referral_code == code)

    def load_errors(
        self,
        since: Optional[datetime] = None,
        resolved: Optional[bool] = None,
        error_types: Optional[Sequence[str]] = None,
        excluded_types: Sequence[str] = (),
        limit: Optional[int] = None,
    ) -> Sequence[ErrorLogRecord]:
        rows = sorted(self.errors, key=lambda error: ensure_utc(error.created_at), reverse=True)
        if since is not None:
            rows = [error for error in rows if ensure_utc(error.created_at) >= ensure_utc(since)]
        if resolved is not None:
            rows = [error for error in rows if error.resolved == resolved]
        if error_types is not None:
            rows = [error for error in rows if error.error_type in error_types]
        if excluded_types:
            rows = [error for error in rows if error.error_type not in excluded_types]
        if limit is not None:
            rows = rows[: max(limit, 0)]
        return tuple(rows)

    def load_vacancies(self) -> Sequence[VacancyRecord]:
        return tuple(vacancy for vacancy in self.vacancies if vacancy.idle_seats > 0)

    def count_opportunities(self, opportunity_type: str) -> int:
        return sum(1 for opportunity in self.opportunities if opportunity.opportunity_type == opportunity_type)


def build_repository_from_env(config: Optional[AnalyticsConfig] = None) -> Optional[AnalyticsDataRepository]:
    cfg = config or load_analytics_config()
    if cfg.database.url:
        engine = create_engine(cfg.database.url)
        return SQLAnalyticsRepository(engine, page_size=cfg.database.page_size)
    return None
