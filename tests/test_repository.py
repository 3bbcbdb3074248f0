from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.pool import StaticPool

from nubo_admin.analytics.config import AnalyticsConfig, DatabaseConfig
from nubo_admin.analytics.exceptions import DecodeFailure, UpstreamQueryFailure
from nubo_admin.analytics.models import ErrorFeedFilters, ResolutionStatus, Severity
from nubo_admin.analytics.partners import compute_partner_stats
from nubo_admin.analytics.repository import SQLAnalyticsRepository, build_repository_from_env
from nubo_admin.analytics.service import AnalyticsService

SCHEMA = [
    """
    CREATE TABLE user_profiles (
        id TEXT PRIMARY KEY, full_name TEXT, city TEXT, age INTEGER, created_at TEXT,
        onboarding_completed INTEGER, referral_code TEXT, phone TEXT, last_sign_in_at TEXT
    )
    """,
    """
    CREATE TABLE user_preferences (
        id TEXT PRIMARY KEY, user_id TEXT, course_interest TEXT, program_preference TEXT,
        location_preference TEXT, workflow_data TEXT, updated_at TEXT
    )
    """,
    "CREATE TABLE chat_messages (id TEXT, user_id TEXT, created_at TEXT, sender TEXT, workflow TEXT)",
    "CREATE TABLE user_favorites (id TEXT, user_id TEXT, created_at TEXT, course_id TEXT, partner_id TEXT)",
    "CREATE TABLE partners (id TEXT, name TEXT)",
    "CREATE TABLE partners_click (id INTEGER PRIMARY KEY, partner_id TEXT, user_id TEXT, clicks INTEGER)",
    "CREATE TABLE influencers (id TEXT, name TEXT, code TEXT)",
    "CREATE TABLE opportunities (id TEXT, opportunity_type TEXT)",
    """
    CREATE TABLE opportunitiessisuvacancies (
        id TEXT, ds_mod_concorrencia TEXT, vagas_ociosas_2025 INTEGER
    )
    """,
    """
    CREATE TABLE agent_errors (
        id TEXT, error_type TEXT, error_message TEXT, created_at TEXT, resolved INTEGER,
        recovery_attempted INTEGER, session_id TEXT, user_id TEXT, stack_trace TEXT, metadata TEXT
    )
    """,
]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    with engine.begin() as connection:
        for statement in SCHEMA:
            connection.execute(text(statement))
        connection.execute(
            text(
                "INSERT INTO user_profiles VALUES "
                "('u1', 'Ana', 'São Paulo - SP', 18, '2025-02-10T12:00:00Z', 1, 'ANA10', '+5511', NULL), "
                "('u2', NULL, 'Recife', NULL, '2025-02-11T12:00:00+00:00', 0, 'ANA10', NULL, '2025-03-01T08:00:00'), "
                "('u3', 'Carla', NULL, 30, '2025-02-12T12:00:00Z', 0, NULL, NULL, NULL)"
            )
        )
        connection.execute(
            text(
                "INSERT INTO user_preferences VALUES "
                "('pref-1', 'u1', '[\"Medicina\", \"Direito\"]', 'sisu', 'Recife - PE', '{\"match\": 1}', '2025-03-10T10:00:00Z'), "
                "('pref-2', 'u2', NULL, 'prouni', NULL, NULL, NULL)"
            )
        )
        connection.execute(
            text(
                "INSERT INTO chat_messages VALUES "
                "('m1', 'u1', '2025-03-12T10:00:00Z', 'user', 'match_workflow'), "
                "('m2', 'u1', '2025-03-12T10:05:00Z', 'assistant', NULL), "
                "('m3', NULL, '2025-03-11T09:00:00Z', 'user', NULL), "
                "('m4', 'u2', '2025-03-10T09:00:00Z', 'user', 'sisu_workflow'), "
                "('m5', 'u2', '2025-03-12T11:00:00Z', 'user', NULL)"
            )
        )
        connection.execute(
            text("INSERT INTO user_favorites VALUES ('f1', 'u3', '2025-03-11T12:00:00Z', 'c1', NULL)")
        )
        connection.execute(text("INSERT INTO partners VALUES ('p2', 'Bolsa B'), ('p1', 'Cursinho A')"))
        connection.execute(
            text(
                "INSERT INTO partners_click VALUES "
                "(1, 'p1', 'u1', 2), (2, 'p2', NULL, NULL), (3, 'p2', 'u2', 5), (4, 'p2', 'u1', 1), (5, 'p1', 'u2', 3)"
            )
        )
        connection.execute(text("INSERT INTO influencers VALUES ('i1', 'Ana Influencer', 'ANA10')"))
        connection.execute(
            text("INSERT INTO opportunities VALUES ('o1', 'sisu'), ('o2', 'sisu'), ('o3', 'prouni'), ('o4', 'fies')")
        )
        connection.execute(
            text(
                "INSERT INTO opportunitiessisuvacancies VALUES "
                "('v1', 'Ampla concorrência', 4), ('v2', NULL, 2), ('v3', 'Ampla concorrência', 0), "
                "('v4', 'Escola pública', NULL), ('v5', 'Escola pública', 3)"
            )
        )
        connection.execute(
            text(
                "INSERT INTO agent_errors VALUES "
                "('e1', 'timeout_error', 'LLM timeout', '2025-03-12T14:00:00Z', 0, 0, 's1', 'u1', NULL, "
                "'{\"node\": \"match\"}'), "
                "('e2', 'info', NULL, '2025-03-12T14:55:00Z', 1, 1, NULL, NULL, 'Traceback', NULL), "
                "('e3', 'validation_error', NULL, '2025-03-11T19:00:00Z', 0, 0, NULL, NULL, NULL, NULL)"
            )
        )
    yield engine
    engine.dispose()


def test_profiles_are_decoded(engine):
    profiles = SQLAnalyticsRepository(engine).load_profiles()

    assert [profile.id for profile in profiles] == ["u1", "u2", "u3"]
    ana, anonymous, carla = profiles
    assert ana.created_at == datetime(2025, 2, 10, 12, tzinfo=timezone.utc)
    assert ana.onboarding_completed is True
    assert (ana.referral_code, ana.phone, ana.age) == ("ANA10", "+5511", 18)
    assert anonymous.full_name is None
    # naive timestamps are read as UTC
    assert anonymous.last_sign_in_at == datetime(2025, 3, 1, 8, tzinfo=timezone.utc)
    assert carla.onboarding_completed is False


def test_preferences_decode_json_columns(engine):
    preferences = SQLAnalyticsRepository(engine).load_preferences()

    first, second = preferences
    assert first.course_interest == ("Medicina", "Direito")
    assert first.workflow_data == {"match": 1}
    assert second.course_interest == ()
    assert second.workflow_data == {}
    assert second.updated_at is None


def test_pagination_reads_every_page(engine):
    messages = SQLAnalyticsRepository(engine, page_size=2).load_messages()

    assert [message.id for message in messages] == ["m4", "m3", "m1", "m2", "m5"]
    assert messages[1].user_id is None
    assert messages[2].workflow == "match_workflow"


def test_page_size_matching_row_count_terminates(engine):
    assert len(SQLAnalyticsRepository(engine, page_size=5).load_messages()) == 5
    assert len(SQLAnalyticsRepository(engine, page_size=1).load_favorites()) == 1


def test_partners_and_clicks(engine):
    repository = SQLAnalyticsRepository(engine)

    assert [partner.name for partner in repository.load_partners()] == ["Bolsa B", "Cursinho A"]
    clicks = repository.load_partner_clicks()
    assert sorted((click.partner_id, click.user_id, click.clicks) for click in clicks if click.user_id) == [
        ("p1", "u1", 2),
        ("p1", "u2", 3),
        ("p2", "u1", 1),
        ("p2", "u2", 5),
    ]
    assert [click.clicks for click in clicks if click.user_id is None] == [0]


def test_influencers_and_affiliates(engine):
    repository = SQLAnalyticsRepository(engine)

    assert [influencer.code for influencer in repository.load_influencers()] == ["ANA10"]
    assert [profile.id for profile in repository.load_affiliates("ANA10")] == ["u2", "u1"]
    assert repository.load_affiliates("NOPE") == ()


def test_errors_are_newest_first(engine):
    errors = SQLAnalyticsRepository(engine).load_errors()

    assert [error.id for error in errors] == ["e2", "e1", "e3"]
    info, timeout, _ = errors
    assert info.resolved is True and info.recovery_attempted is True
    assert info.stack_trace == "Traceback"
    assert timeout.metadata == {"node": "match"}
    assert (timeout.session_id, timeout.user_id) == ("s1", "u1")


def test_missing_table_is_an_upstream_failure(engine):
    with engine.begin() as connection:
        connection.execute(text("DROP TABLE influencers"))

    with pytest.raises(UpstreamQueryFailure) as excinfo:
        SQLAnalyticsRepository(engine).load_influencers()

    assert excinfo.value.source == "influencers"
    assert excinfo.value.kind == "upstream_query_failure"


def test_malformed_row_is_a_decode_failure(engine):
    with engine.begin() as connection:
        connection.execute(
            text("INSERT INTO chat_messages VALUES ('m6', 'u1', 'yesterday-ish', 'user', NULL)")
        )

    with pytest.raises(DecodeFailure) as excinfo:
        SQLAnalyticsRepository(engine).load_messages()

    assert excinfo.value.source == "chat_messages"


def test_course_interest_must_be_an_array(engine):
    with engine.begin() as connection:
        connection.execute(
            text("INSERT INTO user_preferences VALUES ('pref-3', 'u3', '\"Medicina\"', NULL, NULL, NULL, NULL)")
        )

    with pytest.raises(DecodeFailure):
        SQLAnalyticsRepository(engine).load_preferences()


def test_build_repository_from_env():
    assert build_repository_from_env(AnalyticsConfig()) is None

    config = AnalyticsConfig(database=DatabaseConfig(url="sqlite://", page_size=50))
    repository = build_repository_from_env(config)

    assert isinstance(repository, SQLAnalyticsRepository)
    assert repository.page_size == 50
    assert repository.source_name == "database"


@pytest.fixture
def statements(engine):
    issued = []

    def record(conn, cursor, statement, parameters, context, executemany):
        issued.append(statement)

    event.listen(engine, "before_cursor_execute", record)
    yield issued
    event.remove(engine, "before_cursor_execute", record)


@pytest.fixture
def many_errors(engine):
    with engine.begin() as connection:
        for index in range(25):
            connection.execute(
                text(
                    "INSERT INTO agent_errors (id, error_type, created_at, resolved, recovery_attempted) "
                    "VALUES (:id, 'api_error', :created_at, 0, 0)"
                ),
                {"id": f"bulk-{index:02d}", "created_at": f"2025-03-01T10:{index:02d}:00Z"},
            )
    return engine


def test_error_feed_reads_only_the_rows_it_shows(many_errors, statements):
    service = AnalyticsService(SQLAnalyticsRepository(many_errors, page_size=10))

    feed = service.error_feed(ErrorFeedFilters(limit=3), now=datetime(2025, 3, 12, 15, tzinfo=timezone.utc))

    assert [error.id for error in feed] == ["e2", "e1", "e3"]
    assert len([statement for statement in statements if "agent_errors" in statement]) == 1


def test_unbounded_error_read_pages_through_the_table(many_errors, statements):
    errors = SQLAnalyticsRepository(many_errors, page_size=10).load_errors()

    assert len(errors) == 28
    assert len(set(error.id for error in errors)) == 28
    assert len([statement for statement in statements if "agent_errors" in statement]) == 3


def test_limit_spanning_several_pages(many_errors):
    errors = SQLAnalyticsRepository(many_errors, page_size=10).load_errors(limit=15)

    assert len(errors) == 15
    assert [error.id for error in errors[:3]] == ["e2", "e1", "e3"]


def test_error_filters_are_applied_by_the_query(engine):
    with engine.begin() as connection:
        connection.execute(
            text(
                "INSERT INTO agent_errors (id, error_type, created_at, resolved, recovery_attempted) "
                "VALUES ('e4', 'banana', '2025-03-10T08:00:00Z', 1, 0)"
            )
        )
    service = AnalyticsService(SQLAnalyticsRepository(engine))
    now = datetime(2025, 3, 12, 15, tzinfo=timezone.utc)

    errors = service.error_feed(ErrorFeedFilters(severity=Severity.ERROR), now=now)
    warnings = service.error_feed(ErrorFeedFilters(severity=Severity.WARNING), now=now)
    resolved_errors = service.error_feed(
        ErrorFeedFilters(severity=Severity.ERROR, status=ResolutionStatus.RESOLVED), now=now
    )
    unresolved = SQLAnalyticsRepository(engine).load_errors(resolved=False)

    # unknown types count as errors
    assert [error.id for error in errors] == ["e1", "e4"]
    assert [error.id for error in warnings] == ["e3"]
    assert [error.id for error in resolved_errors] == ["e4"]
    assert [error.id for error in unresolved] == ["e1", "e3"]


def test_tied_sort_keys_do_not_skip_or_repeat_rows_across_pages(engine):
    repository = SQLAnalyticsRepository(engine, page_size=1)

    clicks = repository.load_partner_clicks()
    preferences = repository.load_preferences()

    assert [(click.partner_id, click.user_id, click.clicks) for click in clicks] == [
        ("p1", "u1", 2),
        ("p1", "u2", 3),
        ("p2", None, 0),
        ("p2", "u2", 5),
        ("p2", "u1", 1),
    ]
    stats = compute_partner_stats(repository.load_partners(), clicks)
    assert (stats.total_clicks, stats.unique_users, stats.best_partner_name) == (11, 2, "Bolsa B")
    assert [preference.user_id for preference in preferences] == ["u1", "u2"]


def test_opportunity_sources(engine):
    repository = SQLAnalyticsRepository(engine, page_size=2)

    vacancies = repository.load_vacancies()

    assert [(vacancy.id, vacancy.modality, vacancy.idle_seats) for vacancy in vacancies] == [
        ("v1", "Ampla concorrência", 4),
        ("v2", None, 2),
        ("v5", "Escola pública", 3),
    ]
    assert repository.count_opportunities("sisu") == 2
    assert repository.count_opportunities("prouni") == 1
    assert repository.count_opportunities("enem") == 0


def test_opportunity_count_failure_is_not_zero(engine):
    with engine.begin() as connection:
        connection.execute(text("DROP TABLE opportunities"))

    with pytest.raises(UpstreamQueryFailure, match="opportunities"):
        SQLAnalyticsRepository(engine).count_opportunities("sisu")
