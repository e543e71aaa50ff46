"""Tests for periodic autosave and pruning in highclaw/housekeeping/service.py."""

from datetime import datetime, timedelta, timezone

from highclaw.config.schema import Config
from highclaw.housekeeping.service import HousekeepingService
from highclaw.session.session import Session


class TestHousekeepingService:
    def test_from_config(self, service):
        config = Config()
        config.session.prune_max_count = 7
        hk = HousekeepingService.from_config(service, config)
        assert hk.auto_save_interval_s == 60
        assert hk.prune_max_count == 7

    async def test_trigger_now_saves_then_prunes(self, service, store):
        live = service.get_or_create("live")
        live.add_message("user", "unsaved")
        stale = datetime.now(timezone.utc) - timedelta(days=60)
        store.save(Session(key="stale", created_at=stale, last_activity_at=stale))

        hk = HousekeepingService(service, prune_max_age_days=30, prune_max_count=0)
        result = await hk.trigger_now()

        assert result.pruned == 1
        assert store.load("live").message_count == 1
        assert not store.exists("stale")

    async def test_start_and_stop(self, service, store):
        hk = HousekeepingService(service, auto_save_interval_s=3600, prune_interval_s=3600)
        await hk.start()
        assert hk.is_running
        service.get_or_create("pending").add_message("user", "hi")
        hk.stop()
        assert not hk.is_running
        # stop() performs a final save
        assert store.load("pending").message_count == 1

    async def test_disabled_jobs_start_no_tasks(self, service):
        hk = HousekeepingService(service, auto_save_interval_s=0, prune_interval_s=0)
        await hk.start()
        assert hk._tasks == []
        hk.stop()

    async def test_loop_survives_tick_errors(self, service):
        hk = HousekeepingService(service)
        hk._running = True
        calls = []

        async def tick():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first tick fails")
            hk._running = False

        await hk._run_loop("test", 0, tick)
        assert len(calls) == 2

    def test_run_prune_now_with_nothing_to_do(self, service):
        hk = HousekeepingService(service)
        assert hk.run_prune_now().total == 0
        assert hk.run_autosave_now() == 0
