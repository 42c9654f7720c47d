"""
Tests du suivi d'utilisation des applications et de la purge en deux phases
"""

import sqlite3
from unittest.mock import Mock, patch

import pytest

from reportmate_agent.services.usage import (
    WATCHER_MISSING_WARNING, ApplicationUsageService, UsageSessionStore, match_installed_app
)


@pytest.fixture
def store(tmp_path):
    store = UsageSessionStore(str(tmp_path / "appusage.sqlite"))
    store.ensure_schema()
    return store


def add_sessions(store, count, start_hour=8):
    return [
        store.add_session(
            app_name=f"App{index}",
            path=f"/Applications/App{index}.app",
            user="alice",
            pid=100 + index,
            start_time=f"2026-10-19T{start_hour + index:02d}:00:00Z",
            end_time=f"2026-10-19T{start_hour + index:02d}:30:00Z",
            duration_seconds=1800,
        )
        for index in range(count)
    ]


class TestUsageSessionStore:

    def test_schema_creation_is_idempotent(self, store):
        store.ensure_schema()

        assert store.count() == 0

    def test_mark_without_ids_is_noop(self, store):
        add_sessions(store, 2)

        assert store.mark_transmitted([]) == 0
        assert store.count(transmitted=False) == 2


class TestTwoPhaseDelete:

    @pytest.mark.asyncio
    async def test_sessions_are_deleted_one_cycle_after_transmission(self, store):
        add_sessions(store, 3)
        service = ApplicationUsageService(store=store)

        # Cycle 1 : lecture puis marquage
        snapshot = await service.collect_usage_data()
        assert snapshot.capture_method == "SQLiteWatcher"
        assert snapshot.total_launches == 3
        assert service.confirm_transmission(snapshot.session_ids) == {'deleted': 0, 'marked': 3}
        assert store.count() == 3
        assert store.count(transmitted=True) == 3

        # Cycle 2 : les lignes marquées sont supprimées, la nouvelle est marquée
        add_sessions(store, 1, start_hour=14)
        snapshot = await service.collect_usage_data()
        assert snapshot.total_launches == 1
        assert service.confirm_transmission(snapshot.session_ids) == {'deleted': 3, 'marked': 1}
        assert store.count() == 1
        assert store.count(transmitted=True) == 1

    @pytest.mark.asyncio
    async def test_interrupted_confirmation_replays_next_cycle(self, store):
        add_sessions(store, 2)
        service = ApplicationUsageService(store=store)
        snapshot = await service.collect_usage_data()

        with patch.object(store, "mark_transmitted", side_effect=sqlite3.OperationalError("database is locked")):
            result = service.confirm_transmission(snapshot.session_ids)

        assert result['marked'] == 0
        assert store.count(transmitted=False) == 2

        # Le cycle suivant relit les mêmes sessions : aucune perte
        snapshot = await service.collect_usage_data()
        assert snapshot.total_launches == 2
        assert service.confirm_transmission(snapshot.session_ids)['marked'] == 2

    @pytest.mark.asyncio
    async def test_concurrent_collection_does_not_widen_confirmation(self, store):
        add_sessions(store, 3)
        service = ApplicationUsageService(store=store)

        transmitted = await service.collect_usage_data()
        add_sessions(store, 1, start_hour=14)
        # Collecte concurrente (interface web, sans envoi) entre la lecture et la confirmation
        later = await service.collect_usage_data()
        assert later.total_launches == 4

        assert service.confirm_transmission(transmitted.session_ids)['marked'] == 3
        assert store.count(transmitted=False) == 1

        # La session jamais envoyée survit au cycle suivant
        service.confirm_transmission([])
        assert store.count() == 1

    @pytest.mark.asyncio
    async def test_active_session_has_live_duration(self, store):
        store.add_session("Safari", "/Applications/Safari.app", start_time="2024-01-01T08:00:00Z")
        service = ApplicationUsageService(store=store)

        snapshot = await service.collect_usage_data()

        session = snapshot.active_sessions[0]
        assert session.is_active
        assert session.duration_seconds > 0
        assert 'endTime' not in session.to_dict()


class TestProcessPollingFallback:

    @pytest.mark.asyncio
    async def test_missing_database_uses_running_processes(self, tmp_path):
        service = ApplicationUsageService(db_path=str(tmp_path / "absent.sqlite"))
        processes = [
            Mock(info={'pid': 10, 'name': 'Safari', 'exe': '/Applications/Safari.app/Contents/MacOS/Safari',
                       'username': 'alice', 'create_time': 1_700_000_000}),
            Mock(info={'pid': 11, 'name': 'launchd', 'exe': '/sbin/launchd',
                       'username': 'root', 'create_time': 1_700_000_000}),
        ]

        with patch("reportmate_agent.services.usage.psutil.process_iter", return_value=processes):
            snapshot = await service.collect_usage_data()

        data = snapshot.to_dict()
        assert data['captureMethod'] == "ProcessPolling"
        assert [s['name'] for s in data['activeSessions']] == ["Safari"]
        assert WATCHER_MISSING_WARNING in data['warnings']
        assert snapshot.session_ids == []
        assert service.confirm_transmission(snapshot.session_ids) == {'deleted': 0, 'marked': 0}


def test_match_installed_app():
    installed = [
        {'name': 'Slack', 'path': '/Applications/Slack.app', 'bundleIdentifier': 'com.tinyspeck.slackmacgap'},
    ]

    assert match_installed_app("/Applications/Slack.app/Contents/MacOS/Slack", installed) is installed[0]
    assert match_installed_app("/usr/bin/ssh", installed) is None
