import json

import pytest

from efms.policies import ConfigError
from efms.scheduler import (
    JobScheduler,
    SchedulerSettings,
    load_scheduler_settings,
    main,
)


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now


class RecordingJob:
    def __init__(self):
        self.archival_calls = 0
        self.retention_calls = 0

    def apply_archival_policy(self):
        self.archival_calls += 1

    def apply_retention_policy(self):
        self.retention_calls += 1


def _policy_section(base, threshold, extra=None):
    section = {
        "threshold_storage_utilization": threshold,
        "dds_path": str(base / "dds"),
        "spatial_path": str(base / "dds" / "Spatial"),
        "is_retention_policy_enabled": True,
        "retention_period_in_hours": 24,
        "base_log_directory": str(base / "logs") + "/",
        "log_source": "EdgeController_Retention_Archival",
        "log_file": "EdgeController_Retention_Archival.log",
        "pm": "PMX",
        "retention_policies": {
            "diagnostic": {"path": str(base / "Diagnostics"), "enabled": True,
                           "retention_hours": 96, "file_types": ["csv", "json", "txt"]},
            "log": {"path": str(base / "Logs"), "enabled": True,
                    "retention_hours": 96, "file_types": ["log"]},
            "video_clips": {"path": str(base / "VideoClips"), "enabled": True,
                            "retention_hours": 96, "file_types": ["mp4", "mkv"]},
        },
        "station_policies": {
            "stations": ["Station1", "Station2"],
            "video": {"path_suffix": "/Videos", "enabled": True,
                      "retention_hours": 96, "file_types": ["mp4", "mkv"]},
            "analysis": {"path_suffix": "/Analysis", "enabled": True,
                         "retention_hours": 96, "file_types": ["parquet"]},
        },
    }
    section.update(extra or {})
    return section


def _full_config(tmp_path, poll=1):
    return {
        "scheduler": {
            "archival_interval_minutes": 1,
            "retention_interval_minutes": 2,
            "poll_interval_seconds": poll,
        },
        "archival": {
            "bandwidth_limit_kb": 1024,
            "eligibility": {"Videos": True, "Analysis": True, "Logs": True,
                            "VideoClips": True, "Diagnostics": True},
        },
        "vecow_retention_policy": _policy_section(
            tmp_path / "vecow", 75, {"mounted_path": str(tmp_path / "vecow")}),
        "dds_retention_policy": _policy_section(tmp_path / "ddsroot", 85),
    }


def _write(path, content):
    path.write_text(content, encoding="utf-8")
    return path


def test_load_scheduler_settings_reads_values(tmp_path):
    config = _write(tmp_path / "config.json", json.dumps(_full_config(tmp_path)))
    settings = load_scheduler_settings(config)
    assert settings == SchedulerSettings(1, 2, 1)


def test_load_scheduler_settings_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="Main - Failed to open config.json"):
        load_scheduler_settings(tmp_path / "absent.json")


def test_load_scheduler_settings_malformed(tmp_path):
    config = _write(tmp_path / "config.json",
                    '{ "scheduler": { "archival_interval_minutes": 30, } }')
    with pytest.raises(ConfigError, match="^Failed to parse config.json"):
        load_scheduler_settings(config)


def test_load_scheduler_settings_missing_field(tmp_path):
    config = _write(tmp_path / "config.json",
                    json.dumps({"scheduler": {"archival_interval_minutes": 30,
                                              "retention_interval_minutes": 5}}))
    with pytest.raises(ConfigError, match="poll_interval_seconds"):
        load_scheduler_settings(config)


def test_run_pending_respects_intervals():
    clock = FakeClock()
    job = RecordingJob()
    scheduler = JobScheduler(job, job, SchedulerSettings(1, 2, 1), clock=clock,
                             sleep=lambda _: None)

    assert scheduler.run_pending() == []
    clock.now = 59.0
    assert scheduler.run_pending() == []
    clock.now = 60.0
    assert scheduler.run_pending() == ["archival"]
    clock.now = 120.0
    assert scheduler.run_pending() == ["archival", "retention"]
    assert (job.archival_calls, job.retention_calls) == (2, 1)


def test_run_pending_zero_interval_runs_immediately(capsys):
    job = RecordingJob()
    scheduler = JobScheduler(job, job, SchedulerSettings(0, 0, 1), clock=FakeClock(),
                             sleep=lambda _: None)
    assert scheduler.run_pending() == ["archival", "retention"]
    out = capsys.readouterr().out
    assert "Running Archival Job" in out
    assert "Running Retention Job" in out


def test_run_pending_updates_last_run_time():
    clock = FakeClock(10.0)
    job = RecordingJob()
    scheduler = JobScheduler(job, job, SchedulerSettings(1, 5, 1), clock=clock,
                             sleep=lambda _: None)
    clock.now = 75.0
    scheduler.run_pending()
    assert scheduler.last_archival_run == 75.0
    assert scheduler.last_retention_run == 10.0


def test_run_sleeps_poll_interval_each_iteration():
    clock = FakeClock()
    sleeps = []

    def fake_sleep(seconds):
        sleeps.append(seconds)
        clock.now += 60.0

    job = RecordingJob()
    scheduler = JobScheduler(job, job, SchedulerSettings(1, 2, 7), clock=clock,
                             sleep=fake_sleep)
    scheduler.run(iterations=4)
    assert sleeps == [7, 7, 7, 7]
    assert job.archival_calls == 3
    assert job.retention_calls == 1


def test_main_fails_on_malformed_config(tmp_path, capsys):
    config = _write(tmp_path / "config.json",
                    '{ "scheduler": { "archival_interval_minutes": 30, } }')
    code = main(["--config", str(config), "--scheduler-config", str(config),
                 "--database", str(tmp_path / "efms.db"), "--iterations", "1"])
    assert code == 1
    assert "Error: Failed to parse config.json" in capsys.readouterr().err


def test_main_runs_bounded_loop(tmp_path):
    config = _write(tmp_path / "config.json",
                    json.dumps(_full_config(tmp_path, poll=0)))
    code = main(["--config", str(config), "--scheduler-config", str(config),
                 "--database", str(tmp_path / "efms.db"), "--iterations", "2"])
    assert code == 0
    assert (tmp_path / "efms.db").is_file()
    assert any((tmp_path / "vecow" / "logs").iterdir())
    assert any((tmp_path / "ddsroot" / "logs").iterdir())


def test_main_fails_when_scheduler_config_missing(tmp_path, capsys):
    config = _write(tmp_path / "config.json",
                    json.dumps(_full_config(tmp_path, poll=0)))
    code = main(["--config", str(config),
                 "--scheduler-config", str(tmp_path / "absent.json"),
                 "--database", str(tmp_path / "efms.db"), "--iterations", "1"])
    assert code == 1
    assert "Main - Failed to open config.json" in capsys.readouterr().err