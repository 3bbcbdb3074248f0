from datetime import datetime, timedelta, timezone

import pytest

from nubo_admin.analytics.dataset import AnalyticsDataset
from nubo_admin.analytics.models import (
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
from nubo_admin.analytics.repository import InMemoryAnalyticsRepository

# Wednesday
NOW = datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)


def ago(**delta) -> datetime:
    return NOW - timedelta(**delta)


@pytest.fixture
def profiles():
    return [
        UserProfile(
            id="u1",
            full_name="Ana",
            city="São Paulo - SP",
            age=18,
            created_at=ago(days=30),
            onboarding_completed=True,
            referral_code="ANA10",
            phone="+5511999990001",
        ),
        UserProfile(
            id="u2",
            full_name="Bruno",
            city="são paulo",
            age=19,
            created_at=ago(days=20),
            referral_code="ANA10",
        ),
        UserProfile(id="u3", full_name=None, city="Rio de Janeiro", created_at=ago(days=10), onboarding_completed=True),
        UserProfile(id="u4", full_name="Carla", city=None, created_at=ago(days=5), referral_code="BIA"),
    ]


@pytest.fixture
def preferences():
    return [
        UserPreference(
            user_id="u1",
            course_interest=("Medicina", "Direito"),
            program_preference="sisu",
            location_preference="Recife - PE",
            workflow_data={"match": 1},
            updated_at=ago(days=2),
        ),
        UserPreference(
            user_id="u2",
            course_interest=("Medicina",),
            program_preference="prouni",
            location_preference="recife",
            updated_at=ago(days=10),
        ),
        UserPreference(user_id="u5", course_interest=("Direito ",), program_preference="sisu"),
    ]


@pytest.fixture
def messages():
    return [
        ChatMessage(id="m1", user_id="u1", created_at=ago(minutes=200), workflow="match_workflow"),
        ChatMessage(id="m2", user_id="u1", created_at=ago(minutes=190)),
        ChatMessage(id="m3", user_id="u1", created_at=ago(minutes=10)),
        ChatMessage(id="m4", user_id="u2", created_at=ago(days=1), workflow="sisu_workflow"),
        ChatMessage(id="m5", user_id="u5", created_at=ago(hours=3)),
        ChatMessage(id="m6", user_id=None, created_at=ago(days=8)),
    ]


@pytest.fixture
def favorites():
    return [
        FavoriteRecord(id="f1", user_id="u3", created_at=ago(days=1)),
        FavoriteRecord(id="f2", user_id="u3", created_at=ago(days=9)),
        FavoriteRecord(id="f3", user_id="u1", created_at=ago(days=3)),
    ]


@pytest.fixture
def dataset(profiles, preferences, messages, favorites):
    return AnalyticsDataset(profiles=profiles, preferences=preferences, messages=messages, favorites=favorites)


@pytest.fixture
def error_logs():
    return [
        ErrorLogRecord(id="e1", error_type="timeout_error", created_at=ago(hours=1), error_message="LLM timeout"),
        ErrorLogRecord(id="e2", error_type="validation_error", created_at=ago(hours=20)),
        ErrorLogRecord(id="e3", error_type="info", created_at=ago(minutes=5), resolved=True),
        ErrorLogRecord(id="e4", error_type="banana", created_at=ago(days=2), recovery_attempted=True),
    ]


@pytest.fixture
def repository(profiles, preferences, messages, favorites, error_logs):
    return InMemoryAnalyticsRepository(
        profiles=profiles,
        preferences=preferences,
        messages=messages,
        favorites=favorites,
        partners=[PartnerRecord(id="p1", name="Cursinho A"), PartnerRecord(id="p2", name="Bolsa B")],
        partner_clicks=[
            PartnerClick(partner_id="p1", user_id="u1", clicks=2),
            PartnerClick(partner_id="p2", user_id="u2", clicks=5),
            PartnerClick(partner_id="p1", user_id="u2", clicks=1),
        ],
        influencers=[
            InfluencerRecord(id="i1", name="Ana Influencer", code="ANA10"),
            InfluencerRecord(id="i2", name="Bia", code="BIA"),
            InfluencerRecord(id="i3", name="Caio", code="CAIO"),
        ],
        errors=error_logs,
        vacancies=[
            VacancyRecord(id="v1", modality="Ampla concorrência", idle_seats=6),
            VacancyRecord(id="v2", modality="Escola pública", idle_seats=3),
            VacancyRecord(id="v3", modality=None, idle_seats=1),
            VacancyRecord(id="v4", modality="Ampla concorrência", idle_seats=0),
        ],
        opportunities=[
            OpportunityRecord(id="o1", opportunity_type="sisu"),
            OpportunityRecord(id="o2", opportunity_type="prouni"),
            OpportunityRecord(id="o3", opportunity_type="sisu"),
            OpportunityRecord(id="o4", opportunity_type=None),
        ],
    )
