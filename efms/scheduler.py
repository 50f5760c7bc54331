"""Periodic scheduling of the archival and retention jobs, and the command entry point."""

from __future__ import annotations

import argparse
import itertools
import json
import os
import shutil
import sqlite3
import sys
import time
from collections.abc import Callable, Mapping, Sequence
from contextlib import closing
from dataclasses import dataclass
from typing import Any, Protocol

from efms.archival import ArchivalController, load_archival_config
from efms.incidents import Permission
from efms.policies import ConfigError, load_dds_policy, load_vecow_policy
from efms.retention import RetentionController

DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_SCHEDULER_CONFIG_PATH = "../configuration/config.json"
DEFAULT_DATABASE_PATH = "efms.db"

_OPEN_ERROR = "Main - Failed to open config.json"
_PARSE_ERROR = "Failed to parse config.json: "
_COPY_CHUNK = 64 * 1024


@dataclass(frozen=True)
class SchedulerSettings:
    """How often each job runs and how long the loop sleeps between checks."""

    archival_interval_minutes: int
    retention_interval_minutes: int
    poll_interval_seconds: int


def _setting(section: Any, key: str) -> int:
    if section is None:
        value = None
    elif isinstance(section, Mapping):
        value = section.get(key)
    else:
        raise ConfigError(f"{_PARSE_ERROR}cannot look up '{key}' in scheduler: not an object")
    if isinstance(value, (bool, int, float)):
        return int(value)
    kind = "null" if value is None else type(value).__name__
    raise ConfigError(f"{_PARSE_ERROR}scheduler.{key} must be a number, not {kind}")


def load_scheduler_settings(path: str | os.PathLike[str] = DEFAULT_SCHEDULER_CONFIG_PATH) -> SchedulerSettings:
    """Read the ``scheduler`` section of the configuration.

    Raises ConfigError when the file cannot be opened or parsed, or when a
    setting is missing or not a number.
    """
    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    except OSError as exc:
        raise ConfigError(_OPEN_ERROR) from exc
    try:
        config = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{_PARSE_ERROR}{exc}") from exc
    if config is not None and not isinstance(config, Mapping):
        raise ConfigError(f"{_PARSE_ERROR}configuration is not an object")
    section = None if config is None else config.get("scheduler")
    return SchedulerSettings(
        archival_interval_minutes=_setting(section, "archival_interval_minutes"),
        retention_interval_minutes=_setting(section, "retention_interval_minutes"),
        poll_interval_seconds=_setting(section, "poll_interval_seconds"),
    )


class _ArchivalJob(Protocol):
    def apply_archival_policy(self) -> None: ...


class _RetentionJob(Protocol):
    def apply_retention_policy(self) -> None: ...


class JobScheduler:
    """Runs archival and retention whenever their interval has elapsed."""

    def __init__(self, archival_controller: _ArchivalJob, retention_controller: _RetentionJob,
                 settings: SchedulerSettings,
                 clock: Callable[[], float] | None = None,
                 sleep: Callable[[float], None] | None = None) -> None:
        self.archival_controller = archival_controller
        self.retention_controller = retention_controller
        self.settings = settings
        self._clock = clock if clock is not None else time.monotonic
        self._sleep = sleep if sleep is not None else time.sleep
        start = self._clock()
        self.last_archival_run = start
        self.last_retention_run = start

    @staticmethod
    def _whole_minutes(elapsed: float) -> int:
        return int(elapsed / 60)

    def run_pending(self) -> list[str]:
        """Run every job whose interval has elapsed and return their names."""
        now = self._clock()
        ran: list[str] = []
        if self._whole_minutes(now - self.last_archival_run) >= self.settings.archival_interval_minutes:
            print("Running Archival Job")
            self.archival_controller.apply_archival_policy()
            self.last_archival_run = now
            ran.append("archival")
        if self._whole_minutes(now - self.last_retention_run) >= self.settings.retention_interval_minutes:
            print("Running Retention Job")
            self.retention_controller.apply_retention_policy()
            self.last_retention_run = now
            ran.append("retention")
        return ran

    def run(self, iterations: int | None = None) -> None:
        """Check and sleep in a loop; forever unless ``iterations`` is given."""
        counter = itertools.count() if iterations is None else range(iterations)
        for _ in counter:
            self.run_pending()
            self._sleep(self.settings.poll_interval_seconds)


class _LocalFileService:
    """File operations on the local file system."""

    def get_memory_details(self, path: str) -> tuple[int, int, int]:
        usage = shutil.disk_usage(path)
        return usage.total, usage.used, usage.free

    def is_mounted_drive_accessible(self, path: str) -> bool:
        return os.path.isdir(path) and os.access(path, os.R_OK | os.W_OK)

    def copy_files(self, source: str, destination: str, bandwidth_limit_kb: int) -> None:
        parent = os.path.dirname(destination)
        if parent:
            os.makedirs(parent, exist_ok=True)
        rate = max(bandwidth_limit_kb, 1) * 1024
        started = time.monotonic()
        copied = 0
        with open(source, "rb") as src, open(destination, "wb") as dst:
            for chunk in iter(lambda: src.read(_COPY_CHUNK), b""):
                dst.write(chunk)
                copied += len(chunk)
                ahead = copied / rate - (time.monotonic() - started)
                if ahead > 0:
                    time.sleep(ahead)
        shutil.copystat(source, destination)

    def delete_file(self, file_path: str) -> None:
        os.remove(file_path)

    def is_directory_empty(self, directory_path: str) -> bool:
        with os.scandir(directory_path) as entries:
            return next(entries, None) is None

    def delete_directory(self, directory_path: str) -> None:
        os.rmdir(directory_path)

    def get_file_age_in_hours(self, file_path: str) -> float:
        return (time.time() - os.path.getmtime(file_path)) / 3600.0

    def check_file_permissions(self, file_path: str, permission: Permission) -> bool:
        if permission is Permission.DELETE:
            parent = os.path.dirname(os.path.abspath(file_path))
            return os.path.exists(file_path) and os.access(parent, os.W_OK | os.X_OK)
        return False

    def read_directory_recursively(self, path: str) -> tuple[list[str], list[str]]:
        files: list[str] = []
        directories: list[str] = []
        for root, dirs, names in os.walk(path, topdown=False):
            files.extend(os.path.join(root, name) for name in sorted(names))
            directories.extend(os.path.join(root, name) for name in sorted(dirs))
        return files, directories

    def file_exists(self, file_path: str) -> bool:
        return os.path.isfile(file_path)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS incident (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    process_name TEXT,
    incident_message TEXT,
    incident_time TEXT,
    incident_details TEXT
);
CREATE TABLE IF NOT EXISTS recovery (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    incident_id INTEGER REFERENCES incident(id),
    recovery_status TEXT
);
CREATE TABLE IF NOT EXISTS analytics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    video_file_location TEXT,
    dds_video_file_location TEXT,
    parquet_file_location TEXT,
    dds_parquet_file_location TEXT
);
"""

_RETURNING_ID = "RETURNING ID"


class _SqliteDatabase:
    """Incident and analytics store kept in an SQLite file."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        connection.create_function(
            "NOW", 0, lambda: time.strftime("%Y-%m-%d %H:%M:%S"))
        connection.executescript(_SCHEMA)
        connection.commit()

    def execute_select(self, query: str) -> Sequence[Sequence[str]]:
        rows = self._connection.execute(query).fetchall()
        return [tuple("" if value is None else str(value) for value in row) for row in rows]

    def execute_insert(self, query: str) -> int:
        statement = query.rstrip()
        if statement.upper().endswith(_RETURNING_ID):
            statement = statement[: -len(_RETURNING_ID)]
        cursor = self._connection.execute(statement)
        self._connection.commit()
        return int(cursor.lastrowid or 0)

    def execute_update(self, query: str) -> None:
        self._connection.execute(query)
        self._connection.commit()


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="efms", description="Archive and expire files on edge and DDS storage.")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH,
                        help="configuration holding the policies and archival settings")
    parser.add_argument("--scheduler-config", default=DEFAULT_SCHEDULER_CONFIG_PATH,
                        help="configuration holding the scheduler settings")
    parser.add_argument("--database", default=DEFAULT_DATABASE_PATH,
                        help="SQLite file used for incidents and archival status")
    parser.add_argument("--iterations", type=int, default=None,
                        help="stop after this many polling rounds")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Build the controllers from the configuration and run the scheduler."""
    args = _parse_args(argv)
    try:
        with closing(sqlite3.connect(args.database)) as connection:
            database = _SqliteDatabase(connection)
            file_service = _LocalFileService()
            vecow = load_vecow_policy(args.config)
            dds = load_dds_policy(args.config)
            archival = ArchivalController(
                vecow.to_dict(), vecow.log_source, vecow.log_file_path,
                file_service, database, config=load_archival_config(args.config))
            retention = RetentionController(
                dds.to_dict(), dds.log_file_path, dds.log_source, file_service, database)
            settings = load_scheduler_settings(args.scheduler_config)
            JobScheduler(archival, retention, settings).run(args.iterations)
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())