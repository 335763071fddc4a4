"""Tests for the background distribution jobs."""

import logging
import time
from datetime import datetime, timedelta

from leadflow.tasks import DistributionTaskRunner
from leadflow.storage.models import LeadStatus


class TestDistributionTaskRunner:
    """Tests for DistributionTaskRunner."""

    def test_run_once_runs_every_job(self, db, config):
        runner = DistributionTaskRunner(db=db, config=config)

        results = runner.run_once()

        assert set(results) == {"release_expired", "expire_stale", "recalculate_queue", "cleanup"}
        assert results["release_expired"] == 0
        assert results["expire_stale"] == 0

    def test_run_once_releases_expired_reservation(self, db, config, realtors):
        runner = DistributionTaskRunner(db=db, config=config)
        past = datetime.now() - timedelta(minutes=20)
        lead = runner.leads.create_lead(now=past)
        runner.leads.distribute_new_lead(lead.id, now=past)

        results = runner.run_once()

        assert results["release_expired"] == 1
        updated = db.get_lead(lead.id)
        assert updated.status == LeadStatus.RESERVED
        assert updated.realtor_id == "bruno"

    def test_failing_job_is_logged(self, db, config, caplog):
        runner = DistributionTaskRunner(db=db, config=config)

        def broken():
            raise RuntimeError("boom")

        runner.jobs = [("broken", 60, broken)] + runner.jobs

        with caplog.at_level(logging.ERROR):
            results = runner.run_once()

        assert results["broken"] is None
        assert results["cleanup"] is not None
        assert "broken failed" in caplog.text

    def test_run_due_respects_intervals(self, db, config):
        runner = DistributionTaskRunner(db=db, config=config)

        first = runner.run_due()
        second = runner.run_due()

        assert set(first) == {"release_expired", "expire_stale", "recalculate_queue", "cleanup"}
        assert second == {}

    def test_start_and_stop(self, db, config):
        runner = DistributionTaskRunner(db=db, config=config, tick_seconds=0.01)

        runner.start()
        time.sleep(0.1)
        runner.stop()

        assert runner.running is False
        assert not runner.thread.is_alive()
        assert "release_expired" in runner.last_run
