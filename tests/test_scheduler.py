"""
Tests de la planification des cycles de collecte
"""

import threading
from unittest.mock import Mock

import pytest

from reportmate_agent.core.scheduler import CollectionScheduler


@pytest.fixture
def callback():
    return Mock()


@pytest.fixture
def scheduler(config, agent_logger, callback):
    config.set('agent', 'collection_interval', '120')
    return CollectionScheduler(config, agent_logger, callback)


class TestCollectionScheduler:

    def test_interval_from_configuration(self, scheduler):
        status = scheduler.get_status()

        assert status['interval_seconds'] == 120
        assert status['scheduled_jobs_count'] == 1
        assert status['next_run'] is not None
        assert status['last_run'] is None

    def test_invalid_interval_falls_back_to_one_hour(self, config, agent_logger, callback):
        config.set('agent', 'collection_interval', '0')

        scheduler = CollectionScheduler(config, agent_logger, callback)

        assert scheduler.interval == 3600

    def test_cycle_failure_is_contained(self, scheduler, callback):
        callback.side_effect = RuntimeError("boom")

        scheduler._scheduled_cycle()

        assert scheduler.last_run is None
        assert not scheduler.cycle_lock.locked()

    def test_overlapping_cycle_is_skipped(self, scheduler, callback):
        scheduler.cycle_lock.acquire()
        try:
            scheduler._scheduled_cycle()
        finally:
            scheduler.cycle_lock.release()

        callback.assert_not_called()

    def test_start_runs_first_cycle_then_stops(self, scheduler, callback):
        ran = threading.Event()
        callback.side_effect = ran.set

        scheduler.start()
        assert ran.wait(timeout=5)
        scheduler.stop()

        assert not scheduler.is_running
        assert scheduler.get_status()['last_run'] is not None
