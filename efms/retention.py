"""Retention of files on the DDS share."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from efms.incidents import Database, FileService, Logger, Permission, log_incident
from efms.logutils import create_log_info

_DB_FAILURE_CODE = "05013"
_PATH_KEYS = (
    "VIDEO_RETENTION_POLICY",
    "PARQUET_RETENTION_POLICY",
    "DIAGNOSTIC_RETENTION_POLICY",
    "LOG_RETENTION_POLICY",
    "VIDEO_CLIPS_RETENTION_POLICY",
)
_CATEGORY_KEYS = (
    ("/Videos/", "VIDEO_RETENTION_POLICY"),
    ("/Analysis/", "PARQUET_RETENTION_POLICY"),
    ("/Diagnostics/", "DIAGNOSTIC_RETENTION_POLICY"),
    ("/Logs/", "LOG_RETENTION_POLICY"),
    ("/VideoClips/", "VIDEO_CLIPS_RETENTION_POLICY"),
)
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _stoi(text: str) -> int:
    match = _LEADING_INT.match(text)
    if match is None:
        raise ValueError(f"invalid integer: {text!r}")
    return int(match.group(1))


class _StandardLogger:
    """Logger that forwards structured events to the ``logging`` module."""

    def __init__(self, source: str) -> None:
        self._log = logging.getLogger(source or "efms")

    def _emit(self, level: int, message: str, details: Mapping[str, Any],
              event: str, error_code: str) -> None:
        self._log.log(level, "%s [%s%s] %s", message, event,
                      f" {error_code}" if error_code else "", dict(details))

    def info(self, message, details, event="", notify=False, error_code=""):
        self._emit(logging.INFO, message, details, event, error_code)

    def warning(self, message, details, event="", notify=False, error_code=""):
        self._emit(logging.WARNING, message, details, event, error_code)

    def error(self, message, details, event="", notify=False, error_code=""):
        self._emit(logging.ERROR, message, details, event, error_code)

    def critical(self, message, details, event="", notify=False, error_code=""):
        self._emit(logging.CRITICAL, message, details, event, error_code)


class RetentionController:
    """Deletes expired files from the DDS share and keeps its usage below a threshold."""

    def __init__(self, retention_policy: Mapping[str, Mapping[str, str]], log_file_path: str,
                 source: str, file_service: FileService, database: Database,
                 logger: Logger | None = None) -> None:
        self.retention_policy: dict[str, dict[str, str]] = {
            key: dict(entry) for key, entry in retention_policy.items()
        }
        self.log_file_path = log_file_path
        self.source = source
        self.file_service = file_service
        self._database = database
        self._logger = logger if logger is not None else _StandardLogger(source)
        try:
            self._logger.info("RetentionController initialization started",
                              create_log_info({"detail": "Initialization started successfully"}),
                              "RETEN_INIT_START")
        except Exception as exc:
            raise RuntimeError(f"Failed to initialize logging service: {exc}") from exc

    def log_incident_to_db(self, message: str, details: Mapping[str, Any],
                           error_code: str) -> int | None:
        """Record an incident unless an unrecovered one with this message exists."""
        return log_incident(self._database, self._logger, message, details,
                            error_code, _DB_FAILURE_CODE)

    def _report(self, level: str, message: str, detail: str, error_code: str,
                event: str = "RETENTION_ERR") -> None:
        getattr(self._logger, level)(message, create_log_info({"detail": detail}),
                                     event, True, error_code)
        self.log_incident_to_db(message, create_log_info({"detail": detail}), error_code)

    def apply_retention_policy(self) -> None:
        """Check the DDS share and run the pipeline matching its utilization."""
        try:
            self._logger.info("Applying Retention Policy...",
                              create_log_info({"detail": "Retention policy application initiated"}))
            entry = self.retention_policy.get("DDS_PATH")
            if entry is None:
                self._report("critical", "DDS_PATH is missing in the retention policy!",
                             "Retention policy does not contain DDS_PATH", "05014")
                return
            dds_path = entry.get("value")
            if dds_path is None:
                self._report("critical", "'value' is missing under DDS_PATH!",
                             "Retention policy for DDS_PATH does not include a value", "05015")
                return
            self._logger.info("DDS_PATH found", create_log_info({"detail": dds_path}))

            if not self.file_service.is_mounted_drive_accessible(dds_path):
                self._report("critical", "DDS path not accessible",
                             dds_path + "Path not accessible", "05016")
                return

            self._logger.info("Checking retention policy status",
                              create_log_info({"detail": "Starting retention status check"}))
            if self._check_retention_policy():
                self.start_max_utilization_pipeline()
            else:
                self.start_normal_pipeline()
        except Exception as exc:
            self._report("critical", "Error applying retention policy", str(exc), "05017")

    def start_max_utilization_pipeline(self) -> None:
        """Delete files while utilization stays above the threshold."""
        self._logger.info("Maximum Utilization Pipeline Started",
                          create_log_info({"detail": "Max utilization pipeline initiated"}))
        try:
            for path in self._file_paths():
                files, directories = self.file_service.read_directory_recursively(path)
                for file in files:
                    if self._check_retention_policy() and self._check_file_permissions(file):
                        self._logger.info("Deleting File", create_log_info({"file": file}))
                        self.file_service.delete_file(file)
                self.stop_pipeline(directories)
        except Exception as exc:
            self._report("critical", "Error in Maximum Utilization Pipeline", str(exc), "05018")

    def start_normal_pipeline(self) -> None:
        """Delete files older than their station's retention period."""
        self._logger.info("Normal Pipeline Started",
                          create_log_info({"detail": "Normal pipeline initiated"}))
        try:
            for path in self._file_paths():
                self._logger.info("Processing directory", create_log_info({"directory": path}))
                files, directories = self.file_service.read_directory_recursively(path)
                for file in files:
                    if self._is_file_eligible_for_deletion(file) and self._check_file_permissions(file):
                        self._logger.info("Deleting File", create_log_info({"file": file}))
                        self.file_service.delete_file(file)
                self.stop_pipeline(directories)
        except Exception as exc:
            self._report("critical", "Error in Normal Pipeline", str(exc), "05019")

    def stop_pipeline(self, directories: Iterable[str]) -> None:
        """Remove the directories among ``directories`` that are empty."""
        for directory in directories:
            if self.file_service.is_directory_empty(directory):
                self._logger.info("Deleting Empty Directory", create_log_info({"detail": directory}))
                self.file_service.delete_directory(directory)

    # --- helpers ----------------------------------------------------------

    def _file_paths(self) -> list[str]:
        paths: list[str] = []
        for key, entry in sorted(self.retention_policy.items()):
            if not any(marker in key for marker in _PATH_KEYS):
                continue
            value = entry.get("value")
            if value is not None:
                paths.append(value)
                self._logger.info("Station-specific policy path found",
                                  create_log_info({"key": key, "path": value}))
            else:
                self._logger.warning("Missing 'value' in policy config",
                                     create_log_info({"key": key}))
        return paths

    def _disk_space_utilization(self) -> float:
        try:
            entry = self.retention_policy.get("DDS_PATH")
            if entry is None:
                self._report("critical", "'DDS_PATH' key missing in retention policy",
                             "Retention policy does not include DDS_PATH key", "05022")
                return 0.0
            path = entry.get("value")
            if path is None:
                self._report("critical", "'PATH' key missing under 'DDS_PATH'",
                             "Retention policy for DDS_PATH is missing a 'value' key", "05021")
                return 0.0
            total, used, _free = self.file_service.get_memory_details(path)
            if total == 0:
                self._logger.critical("Total memory is zero",
                                      create_log_info({"detail": "Cannot calculate disk space utilization"}),
                                      "RETENTION_ERR", True, "05020")
                return 0.0
            utilization = used / total * 100.0
            self._logger.info("Disk space utilization calculated",
                              create_log_info({"Utilization": f"{utilization:.6f}%"}))
            return utilization
        except Exception:
            return 0.0

    def _check_retention_policy(self) -> bool:
        try:
            utilization = self._disk_space_utilization()
            threshold = _stoi(self.retention_policy["THRESHOLD_STORAGE_UTILIZATION"]["value"])
            exceeded = utilization > threshold
            if exceeded:
                self._logger.info("Storage threshold exceeded", create_log_info(
                    {"Utilization": f"{utilization:.6f}%, Threshold: {threshold}%"}))
            return exceeded
        except Exception as exc:
            self._report("critical", "Error checking retention policy", str(exc), "05023")
            return False

    def _is_file_eligible_for_deletion(self, file_path: str) -> bool:
        try:
            marker = next((key for folder, key in _CATEGORY_KEYS if folder in file_path), None)
            if marker is None:
                self._logger.info("No policy key matched for file",
                                  create_log_info({"detail": file_path}))
                return False

            matched_key = ""
            retention_period = 0
            for key, entry in sorted(self.retention_policy.items()):
                if marker not in key:
                    continue
                if entry["value"] in file_path:
                    matched_key = key
                    if "retentionPeriod" not in entry:
                        self._logger.warning("Missing 'retentionPeriod' for key",
                                             create_log_info({"key": key}))
                        return False
                    retention_period = _stoi(entry["retentionPeriod"])
                    break

            if not matched_key:
                self._logger.info("No station-specific policy matched file",
                                  create_log_info({"file": file_path}))
                return False

            age = int(self.file_service.get_file_age_in_hours(file_path))
            self._logger.info("Checking file eligibility", create_log_info({
                "file": file_path,
                "age": f"{age} hours",
                "retention_period": f"{retention_period} hours",
                "matched_policy": matched_key,
            }))
            return age > retention_period
        except Exception as exc:
            self._report("error", "Error checking file eligibility", str(exc), "05024")
            return False

    def _check_file_permissions(self, file_path: str) -> bool:
        allowed = self.file_service.check_file_permissions(file_path, Permission.DELETE)
        if not allowed:
            self._report("warning", "Insufficient permissions to delete file", file_path,
                         "05025", event="RETENTION_WARN")
        return allowed