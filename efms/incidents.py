"""Service interfaces shared by the controllers and incident recording."""

from __future__ import annotations

import enum
import json
import sys
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

PROCESS_NAME = "EFMS"

_FAILURE_EVENTS = {"05013": "DB_INSERT_FAIL"}
_DEFAULT_FAILURE_EVENT = "DB_OPERATION_FAIL"


class Permission(enum.Enum):
    """File permissions that can be checked before acting on a file."""

    DELETE = "delete"


class Database(Protocol):
    """Query interface of the incident database."""

    def execute_select(self, query: str) -> Sequence[Sequence[str]]:
        """Run a SELECT and return its rows."""

    def execute_insert(self, query: str) -> int:
        """Run an INSERT ... RETURNING id and return the new id."""

    def execute_update(self, query: str) -> None:
        """Run an UPDATE statement."""


class Logger(Protocol):
    """Structured logger used by the controllers."""

    def info(self, message: str, details: Mapping[str, Any], event: str = "",
             notify: bool = False, error_code: str = "") -> None:
        """Record an informational event."""

    def warning(self, message: str, details: Mapping[str, Any], event: str = "",
                notify: bool = False, error_code: str = "") -> None:
        """Record a warning."""

    def error(self, message: str, details: Mapping[str, Any], event: str = "",
              notify: bool = False, error_code: str = "") -> None:
        """Record an error."""

    def critical(self, message: str, details: Mapping[str, Any], event: str = "",
                 notify: bool = False, error_code: str = "") -> None:
        """Record a critical failure."""


class FileService(Protocol):
    """File-system operations the controllers rely on."""

    def get_memory_details(self, path: str) -> tuple[int, int, int]:
        """Return (total, used, free) bytes of the volume holding ``path``."""

    def is_mounted_drive_accessible(self, path: str) -> bool:
        """Tell whether the drive at ``path`` can be reached."""

    def copy_files(self, source: str, destination: str, bandwidth_limit_kb: int) -> None:
        """Copy ``source`` to ``destination`` within a bandwidth limit."""

    def delete_file(self, file_path: str) -> None:
        """Remove a file."""

    def is_directory_empty(self, directory_path: str) -> bool:
        """Tell whether a directory has no entries."""

    def delete_directory(self, directory_path: str) -> None:
        """Remove a directory."""

    def get_file_age_in_hours(self, file_path: str) -> float:
        """Return the age of a file in hours."""

    def check_file_permissions(self, file_path: str, permission: Permission) -> bool:
        """Tell whether ``permission`` is granted on a file."""

    def read_directory_recursively(self, path: str) -> tuple[list[str], list[str]]:
        """Return (files, directories) found below ``path``."""

    def file_exists(self, file_path: str) -> bool:
        """Tell whether a file exists."""


def _quote(text: str) -> str:
    return text.replace("'", "''")


def _active_incident_query(message: str) -> str:
    return (
        "SELECT i.id FROM incident i "
        "LEFT JOIN recovery r ON i.id = r.incident_id "
        f"WHERE i.incident_message = '{_quote(message)}' "
        f"AND i.process_name = '{PROCESS_NAME}' "
        "AND (r.id IS NULL OR r.recovery_status = 'FAILED') "
        "ORDER BY i.incident_time DESC LIMIT 1"
    )


def _insert_incident_query(message: str, details: Mapping[str, Any]) -> str:
    payload = json.dumps(details, separators=(",", ":"), sort_keys=True,
                         ensure_ascii=False, default=str)
    return (
        "INSERT INTO incident (process_name, incident_message, incident_time, incident_details) "
        f"VALUES ('{PROCESS_NAME}', '{_quote(message)}', NOW(), '{_quote(payload)}') "
        "RETURNING id"
    )


def log_incident(database: Database, logger: Logger, message: str,
                 details: Mapping[str, Any], error_code: str,
                 failure_code: str) -> int | None:
    """Record an incident unless an unrecovered one with the same message exists.

    Returns the id of the new incident, or None when it was skipped or the
    database failed. Database failures are logged with ``failure_code``.
    """
    try:
        active = database.execute_select(_active_incident_query(message))
        if active:
            print(f"Skipped duplicate incident: {message} "
                  "(already active or no successful recovery)")
            return None
        with_code = {**details, "error_code": error_code}
        incident_id = database.execute_insert(_insert_incident_query(message, with_code))
        print(f"Inserted incident with ID: {incident_id} for error code: {error_code}")
        return incident_id
    except Exception as exc:  # any database failure is reported, never raised
        print(f"Database Operation Failed: {exc}", file=sys.stderr)
        logger.error("Database Operation Failed", {"error": str(exc)},
                     _FAILURE_EVENTS.get(failure_code, _DEFAULT_FAILURE_EVENT),
                     True, failure_code)
        return None