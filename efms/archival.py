"""Archival of edge storage files to the DDS share."""

from __future__ import annotations

import json
import logging
import os
import re
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from efms.incidents import Database, FileService, Logger, log_incident
from efms.logutils import create_log_info

DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_BANDWIDTH_LIMIT_KB = 10240

_REQUIRED_FIELDS = ("MOUNTED_PATH", "DDS_PATH", "THRESHOLD_STORAGE_UTILIZATION")
_CATEGORIES = ("Videos", "Analysis", "Diagnostics", "Logs", "VideoClips")
_DB_FAILURE_CODE = "05003"
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


@dataclass(frozen=True)
class ArchivalConfig:
    """Archival settings read from the ``archival`` section of the config."""

    bandwidth_limit_kb: int = DEFAULT_BANDWIDTH_LIMIT_KB
    eligibility: Mapping[str, bool] = field(default_factory=dict)
    loaded: bool = False


class _BadValue(ValueError):
    pass


def _member(node: Any, key: str) -> Any:
    if node is None:
        return None
    if isinstance(node, Mapping):
        return node.get(key)
    raise _BadValue(f"cannot look up '{key}' in a non-object value")


def _config_int(value: Any) -> int:
    if isinstance(value, (bool, int, float)):
        return int(value)
    raise _BadValue("expected a number")


def _config_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise _BadValue("expected a boolean")


def _config_items(value: Any) -> Iterable[tuple[str, Any]]:
    if value is None:
        return ()
    if isinstance(value, Mapping):
        return value.items()
    raise _BadValue("expected an object")


def load_archival_config(path: str | os.PathLike[str] = DEFAULT_CONFIG_PATH) -> ArchivalConfig:
    """Read the archival settings; fall back to defaults when they are unusable.

    The result is marked as loaded only when the whole section was read.
    """
    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    except OSError:
        return ArchivalConfig()
    try:
        config = json.loads(text)
    except ValueError:
        return ArchivalConfig()

    bandwidth = DEFAULT_BANDWIDTH_LIMIT_KB
    try:
        archival = _member(config, "archival")
        bandwidth = _config_int(_member(archival, "bandwidth_limit_kb"))
        eligibility = {
            key: _config_bool(value)
            for key, value in _config_items(_member(archival, "eligibility"))
        }
    except _BadValue:
        return ArchivalConfig(bandwidth_limit_kb=bandwidth)
    return ArchivalConfig(bandwidth_limit_kb=bandwidth, eligibility=eligibility, loaded=True)


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


def _sql(text: str) -> str:
    return text.replace("'", "''")


def _stoi(text: Any) -> int:
    if not isinstance(text, str):
        raise ValueError("threshold must be a string")
    match = _LEADING_INT.match(text)
    if match is None:
        raise ValueError(f"invalid threshold: {text!r}")
    return int(match.group(1))


def _number(value: Any) -> float:
    if isinstance(value, (bool, int, float)):
        return float(value)
    raise ValueError("retention period must be a number")


def _looks_like_path(path: str) -> bool:
    return bool(path) and "/" in path and not (len(path) < 10 and "a" <= path[0] <= "z")


class ArchivalController:
    """Copies eligible files to the DDS share and frees space on the edge storage."""

    def __init__(self, archival_policy: Mapping[str, Any], source: str, log_file_path: str,
                 file_service: FileService, database: Database,
                 logger: Logger | None = None, config: ArchivalConfig | None = None) -> None:
        self.source = source
        self.log_file_path = log_file_path
        self.file_service = file_service
        self._database = database
        self._config = config if config is not None else load_archival_config()
        self._logger = logger if logger is not None else _StandardLogger(source)
        try:
            self._logger.info("ArchivalController initialization started",
                              create_log_info({"detail": "Initialization started successfully"}),
                              "ARCH_INIT_START", False)
            if not isinstance(archival_policy, Mapping):
                info = create_log_info({"detail": "Archival policy is not a valid JSON object"})
                self._logger.critical("Invalid archival policy: not a JSON object", info,
                                      "ARCH_POLICY_INVALID", True, "05001")
                self.log_incident_to_db("Invalid archival policy: not a JSON object", info, "05001")
                raise ValueError("Invalid archival policy: not a JSON object")
            for name in _REQUIRED_FIELDS:
                if name not in archival_policy:
                    raise ValueError(f"Missing required field in archival policy: {name}")
            self.archival_policy: dict[str, Any] = dict(archival_policy)
        except Exception as exc:
            info = create_log_info({"detail": str(exc)})
            self._logger.critical("Initialization failed", info, "ARCH_INIT_FAIL", True, "05002")
            self.log_incident_to_db("Initialization failed", info, "05002")
            raise

    def log_incident_to_db(self, message: str, details: Mapping[str, Any],
                           error_code: str) -> int | None:
        """Record an incident unless an unrecovered one with this message exists."""
        return log_incident(self._database, self._logger, message, details,
                            error_code, _DB_FAILURE_CODE)

    def apply_archival_policy(self) -> None:
        """Run the pipeline that matches the current storage utilization."""
        if self._check_archival_policy():
            self._logger.info("Starting max utilization pipeline",
                              create_log_info({"detail": "Storage threshold exceeded"}),
                              "PIPELINE_MAX_START", False)
            self.start_max_utilization_pipeline()
        else:
            self._logger.info("Starting Normal utilization pipeline",
                              create_log_info({"detail": "Normal pipeline processing initiated"}),
                              "PIPELINE_NORMAL_START", False)
            self.start_normal_pipeline()

    def start_max_utilization_pipeline(self) -> None:
        """Delete files until utilization drops to the threshold."""
        for path in self._file_paths():
            files, directories = self.file_service.read_directory_recursively(path)
            for file in files:
                if not self._check_archival_policy():
                    break
                self.file_service.delete_file(file)
            self.stop_pipeline(directories)

    def start_normal_pipeline(self) -> None:
        """Archive eligible files to the DDS share and delete expired ones."""
        for path in self._file_paths():
            print(f"[DEBUG] Checking path: {path}")
            if not os.path.exists(path):
                print(f"[WARNING] Path does not exist: {path}", file=sys.stderr)
                continue

            files, directories = self.file_service.read_directory_recursively(path)
            for file in files:
                if self._is_file_eligible_for_archival(file):
                    if not self.file_service.is_mounted_drive_accessible(
                            self.archival_policy["DDS_PATH"]):
                        info = create_log_info({"detail": "DDS path not accessible"})
                        self._logger.error("DDS path not accessible", info,
                                           "DDS_PATH_ERR", True, "05004")
                        self.log_incident_to_db("DDS path not accessible", info, "05004")
                        return
                    destination = self._destination_path(file)
                    if not self._is_file_archived_to_dds(file):
                        self._logger.info("Archiving file",
                                          create_log_info({"destination": destination}),
                                          "FILE_ARCHIVE", False)
                        self.file_service.copy_files(file, destination,
                                                     self._config.bandwidth_limit_kb)
                        self._update_file_archival_status(file, destination)

                if self._is_file_eligible_for_deletion(file):
                    self.file_service.delete_file(file)

            self.stop_pipeline(directories)

    def stop_pipeline(self, directories: Iterable[str]) -> None:
        """Remove the directories among ``directories`` that are empty."""
        for directory in directories:
            if self.file_service.is_directory_empty(directory):
                self.file_service.delete_directory(directory)

    # --- helpers ----------------------------------------------------------

    def _policy_str(self, key: str) -> str:
        value = self.archival_policy.get(key)
        if not isinstance(value, str):
            raise ValueError(f"{key} must be a string in the archival policy")
        return value

    def _check_archival_policy(self) -> bool:
        try:
            utilization = self._disk_space_utilization()
            if "THRESHOLD_STORAGE_UTILIZATION" not in self.archival_policy:
                self._logger.critical("Missing Threshold Configuration",
                                      create_log_info({"memory_utilization": utilization}),
                                      "THRESHOLD_EXCEEDED", False, "05005")
                return False
            threshold = _stoi(self.archival_policy["THRESHOLD_STORAGE_UTILIZATION"])
            return utilization > threshold
        except Exception as exc:
            self._logger.error("Failed to check archival policy",
                               create_log_info({"detail": str(exc)}),
                               "CHECK_POLICY_FAIL", True, "05006")
            self.log_incident_to_db("Failed to check archival policy",
                                    create_log_info({"detail": str(exc)}), "05006")
            return False

    def _file_paths(self) -> list[str]:
        paths: list[str] = []
        try:
            print("[DEBUG] Starting to extract retention policy paths...")
            for key, value in sorted(self.archival_policy.items()):
                print(f"[DEBUG] Inspecting key: {key}")
                if isinstance(value, str) and "RETENTION_POLICY" in key:
                    if _looks_like_path(value):
                        print(f"[DEBUG] Found retention path for key {key}: {value}")
                        paths.append(value)
                    else:
                        print(f"[DEBUG] Skipping key {key} (value doesn't look like a path)")
                else:
                    print(f"[DEBUG] Skipping key {key} (not a string or not a retention policy)")
            print(f"[DEBUG] Total paths collected: {len(paths)}")
        except Exception as exc:
            self._logger.critical("Failed to get file paths", create_log_info({"detail": str(exc)}),
                                  "GET_PATHS_FAIL", True, "05007")
            print(f"[ERROR] Exception while getting file paths: {exc}", file=sys.stderr)
        return paths

    def _disk_space_utilization(self) -> float:
        try:
            mounted_path = self._policy_str("MOUNTED_PATH")
            total, used, _free = self.file_service.get_memory_details(mounted_path)
            if total == 0:
                raise ValueError("Invalid disk space information: total space is 0")
            return used / total * 100.0
        except Exception as exc:
            self._logger.critical("Failed to get disk space utilization",
                                  create_log_info({"detail": str(exc)}),
                                  "DISK_UTIL_FAIL", True, "05009")
            self.log_incident_to_db("Failed to get disk space utilization",
                                    create_log_info({"detail": str(exc)}), "05009")
            raise

    def _is_file_eligible_for_deletion(self, file_path: str) -> bool:
        age = self.file_service.get_file_age_in_hours(file_path)
        try:
            policies = self.archival_policy.get("RETENTION_POLICIES")
            if not isinstance(policies, Mapping):
                return False
            for category in _CATEGORIES:
                if category in file_path and category in policies:
                    return age > _number(policies[category])
        except Exception:
            pass
        return False

    def _is_file_eligible_for_archival(self, file_path: str) -> bool:
        if not self._config.loaded or not self._config.eligibility:
            return True
        for category in _CATEGORIES:
            if category in file_path:
                return bool(self._config.eligibility.get(category, False))
        return False

    def _is_file_archived_to_dds(self, file_path: str) -> bool:
        if "Videos" in file_path:
            query = ("SELECT COALESCE(dds_video_file_location, '') as dds_location "
                     f"FROM analytics WHERE video_file_location = '{_sql(file_path)}'")
        elif "Analysis" in file_path:
            query = ("SELECT COALESCE(dds_parquet_file_location, '') as dds_location "
                     f"FROM analytics WHERE parquet_file_location = '{_sql(file_path)}'")
        else:
            mounted_path = self._policy_str("MOUNTED_PATH")
            dds_path = self._policy_str("DDS_PATH")
            return self.file_service.file_exists(file_path.replace(mounted_path, dds_path, 1))

        try:
            rows = self._database.execute_select(query)
            return any(row and row[0] for row in rows)
        except Exception as exc:
            self._logger.error("Error checking file archival status",
                               create_log_info({"error": str(exc), "file": file_path}),
                               "ARCHIVE_CHECK_FAIL", False, "05010")
            return False

    def _update_file_archival_status(self, file_path: str, dds_file_path: str) -> None:
        if "Videos" in file_path:
            query = (f"UPDATE analytics SET dds_video_file_location = '{_sql(dds_file_path)}' "
                     f"WHERE video_file_location = '{_sql(file_path)}'")
        elif "Analysis" in file_path:
            query = (f"UPDATE analytics SET dds_parquet_file_location = '{_sql(dds_file_path)}' "
                     f"WHERE parquet_file_location = '{_sql(file_path)}'")
        else:
            return
        try:
            self._database.execute_update(query)
        except Exception as exc:
            self._logger.error("Failed to update archival status",
                               create_log_info({"error": str(exc)}),
                               "ARCHIVE_UPDATE_FAIL", True, "05008")
            self.log_incident_to_db("Failed to update archival status",
                                    create_log_info({"error": str(exc)}), "05008")

    def _destination_path(self, file_path: str) -> str:
        mounted_path = self._policy_str("MOUNTED_PATH")
        if mounted_path in file_path:
            return file_path.replace(mounted_path, self._policy_str("DDS_PATH"), 1)
        info = create_log_info({"detail": "MOUNTED_PATH not found in filePath"})
        self._logger.critical("Failed to create destination path", info,
                              "DEST_PATH_ERR", True, "05012")
        self.log_incident_to_db("Failed to create destination path",
                                create_log_info({"detail": "MOUNTED_PATH not found in filePath"}),
                                "05012")
        return file_path