from pathlib import Path

import pytest

from donorhub_api.observability.scheduler import get_rewards_scheduler_store
from donorhub_api.scheduling import RewardsJobScheduler
from donorhub_api.scheduling.config import JobDefinition, load_job_definitions

REPO_SCHEDULE = Path(__file__).resolve().parents[1] / "config" / "schedules.toml"


def _job(**overrides) -> JobDefinition:
    payload = {
        "id": "job-alpha",
        "task": "tests.flaky",
        "cron": "* * * * *",
        "kwargs": {},
        "max_attempts": 3,
        "base_backoff_seconds": 0.0,
        "backoff_multiplier": 1.0,
        "max_backoff_seconds": 0.0,
        "jitter_seconds": 0.0,
    }
    payload.update(overrides)
    return JobDefinition(**payload)


@pytest.mark.asyncio
async def test_scheduler_retries_and_records_metrics(tmp_path: Path) -> None:
    store = get_rewards_scheduler_store()
    scheduler = RewardsJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    attempts = 0

    async def flaky_job(*, session_factory) -> dict:
        nonlocal attempts
        attempts += 1
        if attempts < 2:
            raise RuntimeError("boom")
        return {"refunded_count": 2}

    job = _job()
    result = await scheduler._build_runner(flaky_job, job)()

    assert result == {"refunded_count": 2}
    assert attempts == 2
    snapshot = store.snapshot()
    assert snapshot["totals"]["runs"] == 1
    assert snapshot["totals"]["success"] == 1
    assert snapshot["totals"]["retries"] == 1
    job_snapshot = snapshot["jobs"][job.id]
    assert job_snapshot["totals"]["attempt_failures"] == 1
    assert job_snapshot["totals"]["consecutive_failures"] == 0
    assert job_snapshot["last_result"] == {"refunded_count": 2}
    assert job_snapshot["last_error"] is None


@pytest.mark.asyncio
async def test_scheduler_records_final_failure(tmp_path: Path) -> None:
    store = get_rewards_scheduler_store()
    scheduler = RewardsJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    async def failing_job(*, session_factory) -> None:
        raise RuntimeError("boom")

    job = _job(id="job-beta", max_attempts=2)
    assert await scheduler._build_runner(failing_job, job)() is None

    job_snapshot = store.snapshot()["jobs"]["job-beta"]
    assert job_snapshot["totals"]["run_failures"] == 1
    assert job_snapshot["totals"]["attempt_failures"] == 2
    assert job_snapshot["totals"]["consecutive_failures"] == 2
    assert job_snapshot["last_error"] == "boom"


def test_backoff_grows_and_is_capped() -> None:
    job = _job(base_backoff_seconds=10.0, backoff_multiplier=2.0, max_backoff_seconds=25.0)

    assert [job.backoff_delay(attempt) for attempt in (1, 2, 3)] == [10.0, 20.0, 25.0]


def test_load_job_definitions_skips_disabled_and_malformed(tmp_path: Path) -> None:
    config_path = tmp_path / "schedules.toml"
    config_path.write_text(
        """
timezone = "Europe/Berlin"

[jobs.voucher_cleanup]
task = "donorhub_api.jobs.rewards.voucher_cleanup.run_voucher_cleanup"
cron = "*/5 * * * *"
max_attempts = 4

[jobs.paused]
task = "donorhub_api.jobs.rewards.voucher_cleanup.run_voucher_cleanup"
cron = "0 * * * *"
enabled = false

[jobs.broken]
cron = "0 * * * *"
""".strip()
    )

    config = load_job_definitions(config_path)

    assert config.timezone == "Europe/Berlin"
    assert [job.id for job in config.jobs] == ["voucher_cleanup"]
    assert config.jobs[0].max_attempts == 4

    with pytest.raises(FileNotFoundError):
        load_job_definitions(tmp_path / "missing.toml")


@pytest.mark.asyncio
async def test_scheduler_registers_cleanup_job_and_runs_it_on_demand(session_factory) -> None:
    scheduler = RewardsJobScheduler(session_factory=session_factory, config_path=REPO_SCHEDULE)
    scheduler.start()
    try:
        assert scheduler.is_running
        health = scheduler.health()
        assert health["configured_jobs"] == 1
        assert health["jobs"][0]["id"] == "voucher_cleanup"

        summary = await scheduler.run_job_now("voucher_cleanup")
        assert summary["refunded_count"] == 0

        with pytest.raises(KeyError):
            await scheduler.run_job_now("unknown")
    finally:
        await scheduler.stop()

    assert not scheduler.is_running
    job_snapshot = get_rewards_scheduler_store().snapshot()["jobs"]["voucher_cleanup"]
    assert job_snapshot["totals"]["success"] == 1
