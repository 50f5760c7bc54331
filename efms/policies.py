"""Retention policies for the edge storage (Vecow) and the DDS share."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

DEFAULT_CONFIG_PATH = "config.json"
DATE_FOLDER_FORMAT = "%Y-%m-%d"

_VECOW_SECTION = "vecow_retention_policy"
_DDS_SECTION = "dds_retention_policy"
_VECOW_OPEN_ERROR = "Vecow Retention-Failed to open config.json"
_DDS_OPEN_ERROR = "DDS Retention - Failed to open config.json"
_PARSE_ERROR = "Failed to parse config.json: "

_MISSING = object()


class ConfigError(RuntimeError):
    """Raised when the configuration file cannot be read or is invalid."""


@dataclass(frozen=True)
class RetentionPolicy:
    """Retention rule for one directory."""

    path: str
    enabled: bool
    retention_period: int
    file_extensions: tuple[str, ...] = ()

    def _entry(self) -> dict[str, str]:
        return {
            "value": self.path,
            "retentionPeriod": str(self.retention_period),
            "enabled": str(bool(self.enabled)),
        }


def current_date_folder() -> str:
    """Return today's local date as ``YYYY-MM-DD``."""
    return datetime.now().strftime(DATE_FOLDER_FORMAT)


def log_directory(base_log_directory: str) -> str:
    """Create and return today's log directory below ``base_log_directory``.

    The base is joined by plain concatenation, so it should end with a slash.
    """
    directory = f"{base_log_directory}{current_date_folder()}/"
    os.makedirs(directory, exist_ok=True)
    return directory


# --- typed access to the parsed JSON -------------------------------------

def _child(node: Any, key: str, where: str) -> Any:
    if node is _MISSING or node is None:
        return _MISSING
    if not isinstance(node, Mapping):
        raise ConfigError(f"{_PARSE_ERROR}cannot look up '{key}' in {where}: not an object")
    return node.get(key, _MISSING)


def _describe(value: Any) -> str:
    if value is _MISSING or value is None:
        return "null"
    return type(value).__name__


def _as_int(value: Any, where: str) -> int:
    if isinstance(value, (bool, int, float)):
        return int(value)
    raise ConfigError(f"{_PARSE_ERROR}{where} must be a number, not {_describe(value)}")


def _as_bool(value: Any, where: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{_PARSE_ERROR}{where} must be a boolean, not {_describe(value)}")


def _as_str(value: Any, where: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"{_PARSE_ERROR}{where} must be a string, not {_describe(value)}")


def _as_str_list(value: Any, where: str) -> tuple[str, ...]:
    if isinstance(value, list):
        return tuple(_as_str(item, f"{where}[{index}]") for index, item in enumerate(value))
    raise ConfigError(f"{_PARSE_ERROR}{where} must be an array, not {_describe(value)}")


class _Section:
    """A named object inside the configuration with typed field access."""

    def __init__(self, node: Any, name: str) -> None:
        self.node = node
        self.name = name

    def sub(self, key: str) -> _Section:
        return _Section(_child(self.node, key, self.name), f"{self.name}.{key}")

    def _get(self, key: str) -> tuple[Any, str]:
        return _child(self.node, key, self.name), f"{self.name}.{key}"

    def int(self, key: str) -> int:
        return _as_int(*self._get(key))

    def bool(self, key: str) -> bool:
        return _as_bool(*self._get(key))

    def str(self, key: str) -> str:
        return _as_str(*self._get(key))

    def str_list(self, key: str) -> tuple[str, ...]:
        return _as_str_list(*self._get(key))


def _read_config(path: str | os.PathLike[str], open_error: str) -> Any:
    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    except OSError as exc:
        raise ConfigError(open_error) from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{_PARSE_ERROR}{exc}") from exc


def _directory_policy(section: _Section) -> RetentionPolicy:
    return RetentionPolicy(
        path=section.str("path"),
        enabled=section.bool("enabled"),
        retention_period=section.int("retention_hours"),
        file_extensions=section.str_list("file_types"),
    )


def _station_policy(section: _Section, spatial_path: str, station: str) -> RetentionPolicy:
    return RetentionPolicy(
        path=f"{spatial_path}/{station}{section.str('path_suffix')}",
        enabled=section.bool("enabled"),
        retention_period=section.int("retention_hours"),
        file_extensions=section.str_list("file_types"),
    )


def _common_fields(section: _Section) -> dict[str, Any]:
    spatial_path = section.str("spatial_path")
    fields: dict[str, Any] = {
        "threshold_storage_utilization": section.int("threshold_storage_utilization"),
        "dds_path": section.str("dds_path"),
        "spatial_path": spatial_path,
        "is_retention_policy_enabled": section.bool("is_retention_policy_enabled"),
        "retention_period_in_hours": section.int("retention_period_in_hours"),
        "base_log_directory": section.str("base_log_directory"),
        "log_source": section.str("log_source"),
        "log_file": section.str("log_file"),
        "pm": section.str("pm"),
    }

    policies = section.sub("retention_policies")
    fields["diagnostic_retention_policy"] = _directory_policy(policies.sub("diagnostic"))
    fields["log_retention_policy"] = _directory_policy(policies.sub("log"))
    fields["video_clips_retention_policy"] = _directory_policy(policies.sub("video_clips"))

    stations = section.sub("station_policies")
    video = stations.sub("video")
    analysis = stations.sub("analysis")
    video_policies: dict[str, RetentionPolicy] = {}
    analysis_policies: dict[str, RetentionPolicy] = {}
    for station in stations.str_list("stations"):
        video_policies[station] = _station_policy(video, spatial_path, station)
        analysis_policies[station] = _station_policy(analysis, spatial_path, station)
    fields["video_station_policies"] = video_policies
    fields["analysis_station_policies"] = analysis_policies

    directory = log_directory(fields["base_log_directory"])
    fields["log_directory"] = directory
    fields["log_file_path"] = directory
    return fields


@dataclass
class _PolicySet:
    threshold_storage_utilization: int
    dds_path: str
    spatial_path: str
    is_retention_policy_enabled: bool
    retention_period_in_hours: int
    base_log_directory: str
    log_source: str
    log_file: str
    pm: str
    diagnostic_retention_policy: RetentionPolicy
    log_retention_policy: RetentionPolicy
    video_clips_retention_policy: RetentionPolicy
    video_station_policies: dict[str, RetentionPolicy] = field(default_factory=dict)
    analysis_station_policies: dict[str, RetentionPolicy] = field(default_factory=dict)
    log_directory: str = ""
    log_file_path: str = ""


@dataclass
class VecowRetentionPolicy(_PolicySet):
    """Retention settings of the edge storage, flattened for archival."""

    mounted_path: str = ""

    def to_dict(self) -> dict[str, str]:
        """Return the settings as a flat mapping of names to string values."""
        result = {
            "THRESHOLD_STORAGE_UTILIZATION": str(self.threshold_storage_utilization),
            "MOUNTED_PATH": self.mounted_path,
            "DDS_PATH": self.dds_path,
            "SPATIAL_PATH": self.spatial_path,
            "IS_RETENTION_POLICY_ENABLED": str(bool(self.is_retention_policy_enabled)),
            "RETENTION_PERIOD_IN_HOURS": str(self.retention_period_in_hours),
            "DIAGNOSTIC_RETENTION_POLICY_PATH": self.diagnostic_retention_policy.path,
            "LOG_RETENTION_POLICY_PATH": self.log_retention_policy.path,
            "VIDEO_CLIPS_RETENTION_POLICY_PATH": self.video_clips_retention_policy.path,
            "LOG_DIRECTORY": self.log_directory,
            "LOG_SOURCE": self.log_source,
            "LOG_FILE": self.log_file,
            "LOG_FILE_PATH": self.log_file_path,
        }
        for station, policy in self.video_station_policies.items():
            result[f"VIDEO_RETENTION_POLICY_{station}"] = policy.path
        for station, policy in self.analysis_station_policies.items():
            result[f"ANALYSIS_RETENTION_POLICY_{station}"] = policy.path
        return result


@dataclass
class DdsRetentionPolicy(_PolicySet):
    """Retention settings of the DDS share, keyed for the retention controller."""

    def to_dict(self) -> dict[str, dict[str, str]]:
        """Return the settings as a mapping of names to attribute dictionaries."""
        result: dict[str, dict[str, str]] = {
            "THRESHOLD_STORAGE_UTILIZATION": {"value": str(self.threshold_storage_utilization)},
            "DDS_PATH": {"value": self.dds_path},
            "SPATIAL_PATH": {"value": self.spatial_path},
            "IS_RETENTION_POLICY_ENABLED": {
                "value": str(bool(self.is_retention_policy_enabled))
            },
            "RETENTION_PERIOD_IN_HOURS": {"value": str(self.retention_period_in_hours)},
            "DIAGNOSTIC_RETENTION_POLICY_PATH": self.diagnostic_retention_policy._entry(),
            "LOG_RETENTION_POLICY_PATH": self.log_retention_policy._entry(),
            "VIDEO_CLIPS_RETENTION_POLICY_PATH": self.video_clips_retention_policy._entry(),
            "LOG_DIRECTORY": {"value": self.log_directory},
            "LOG_SOURCE": {"value": self.log_source},
            "LOG_FILE": {"value": self.log_file},
            "LOG_FILE_PATH": {"value": self.log_file_path},
        }
        for station, policy in self.video_station_policies.items():
            result[f"VIDEO_RETENTION_POLICY_{station}"] = policy._entry()
        for station, policy in self.analysis_station_policies.items():
            result[f"ANALYSIS_RETENTION_POLICY_{station}"] = policy._entry()
        return result


def load_vecow_policy(path: str | os.PathLike[str] = DEFAULT_CONFIG_PATH) -> VecowRetentionPolicy:
    """Load the edge storage policy from the ``vecow_retention_policy`` section.

    Creates today's log directory. Raises ConfigError when the file cannot
    be opened or a field is missing or of the wrong type.
    """
    config = _read_config(path, _VECOW_OPEN_ERROR)
    section = _Section(_child(config, _VECOW_SECTION, "config"), _VECOW_SECTION)
    threshold = section.int("threshold_storage_utilization")
    mounted_path = section.str("mounted_path")
    fields = _common_fields(section)
    fields["threshold_storage_utilization"] = threshold
    return VecowRetentionPolicy(mounted_path=mounted_path, **fields)


def load_dds_policy(path: str | os.PathLike[str] = DEFAULT_CONFIG_PATH) -> DdsRetentionPolicy:
    """Load the DDS policy from the ``dds_retention_policy`` section.

    Creates today's log directory. Raises ConfigError when the file cannot
    be opened or a field is missing or of the wrong type.
    """
    config = _read_config(path, _DDS_OPEN_ERROR)
    section = _Section(_child(config, _DDS_SECTION, "config"), _DDS_SECTION)
    return DdsRetentionPolicy(**_common_fields(section))