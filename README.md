# efms

`efms` is an edge file management service. It runs two periodic jobs.

- **Archival** works on the local mounted storage. For each configured retention
  path that exists, it copies eligible files to the distributed data store (DDS). The
  copy is throttled to the configured bandwidth. For `Videos` and `Analysis` files, it
  records the DDS location in the `analytics` table. It deletes files whose age is
  past the limit in an optional `RETENTION_POLICIES` entry of the archival policy. When
  disk utilization of the mounted path is above the threshold, it deletes files until
  utilization falls back to the threshold. Empty directories are then removed.
- **Retention** works on the DDS. It deletes files under `/Videos/`, `/Analysis/`,
  `/Diagnostics/`, `/Logs/` or `/VideoClips/` that are older than the retention period of
  the station policy whose path they lie under. While DDS utilization is above its
  threshold, it deletes any file that it may delete instead. Empty directories are then
  removed.

Failures are logged. They are also recorded as incidents in the database. A new
incident is written only when the database holds no incident with the same message
that is unrecovered, meaning it has no recovery row or its recovery row is `FAILED`.

## Installation

```
pip install .
pip install ".[test]"   # with pytest
```

## Running

```
efms [--config PATH] [--scheduler-config PATH] [--database PATH] [--iterations N]
```

| Option | Default | Meaning |
| --- | --- | --- |
| `--config` | `config.json` | Holds the policies and the archival settings. |
| `--scheduler-config` | `../configuration/config.json` | Holds the `scheduler` section. |
| `--database` | `efms.db` | SQLite file for incidents and archival status. |
| `--iterations` | none | Number of polling rounds before the command stops. Without it, the command runs forever. |

On each round, the command runs the archival job if its interval has passed since the
last run, which at first is the start of the command. It then does the same check for
the retention job. It then sleeps for the poll interval.

If the configuration cannot be loaded, the command prints `Error: ...` and exits with
status 1. The same happens when a controller cannot be built.

Loading the policies creates today's log directory, `<base_log_directory>YYYY-MM-DD/`,
for each of the two policies.

## Configuration

- `scheduler` has three settings: `archival_interval_minutes`,
  `retention_interval_minutes` and `poll_interval_seconds`.
- `archival` has two settings:
  - `bandwidth_limit_kb` sets the copy limit. The default is 10240.
  - `eligibility` maps a category (`Videos`, `Analysis`, `Diagnostics`, `Logs`,
    `VideoClips`) to whether it is archived. If this section is missing or invalid,
    every file is treated as eligible.
- `vecow_retention_policy` and `dds_retention_policy` share these settings:
  - `threshold_storage_utilization`
  - `dds_path`
  - `spatial_path`
  - `is_retention_policy_enabled`
  - `retention_period_in_hours`
  - `base_log_directory`
  - `log_source`
  - `log_file`
  - `pm`
  - `retention_policies`, with the entries `diagnostic`, `log` and `video_clips`
  - `station_policies`, with `stations`, `video` and `analysis`

  `vecow_retention_policy` also needs `mounted_path`. If a field is missing or has the
  wrong type, loading raises `efms.policies.ConfigError`.

## Using the library

- `efms.policies.load_vecow_policy(path)` returns a `VecowRetentionPolicy`.
  `load_dds_policy(path)` returns a `DdsRetentionPolicy`. Their `to_dict()` methods
  give the mappings that the controllers take.
- `efms.archival.ArchivalController(policy, source, log_file_path, file_service,
  database, logger=None, config=None)` requires `MOUNTED_PATH`, `DDS_PATH` and
  `THRESHOLD_STORAGE_UTILIZATION`. Its methods are `apply_archival_policy()`,
  `start_normal_pipeline()`, `start_max_utilization_pipeline()` and
  `stop_pipeline(directories)`. `load_archival_config(path)` reads the `archival`
  section.
- `efms.retention.RetentionController(policy, log_file_path, source, file_service,
  database, logger=None)` has the methods `apply_retention_policy()`, the two pipeline
  methods and `stop_pipeline(directories)`.
- `efms.scheduler.JobScheduler(archival, retention, settings, clock=None, sleep=None)`
  has two methods. `run_pending()` performs one check and returns the names of the jobs
  it ran. `run(iterations=None)` loops. `load_scheduler_settings(path)` reads the
  `scheduler` section.
- `efms.incidents` defines the `FileService`, `Database` and `Logger` interfaces that
  the controllers expect. It also defines `Permission` and `log_incident()`.
  `efms.logutils.create_log_info()` adds a timestamp to a log payload.

## What it does not do

- Incidents and archival status go only to a local SQLite file. The command creates the
  `incident`, `recovery` and `analytics` tables there. It does not connect to a
  PostgreSQL or any other database server. To use another database, pass your own
  object with the `Database` interface to the controllers.
- Without a logger argument, the controllers log through Python's `logging` module.
  The command does not configure `logging`, and it writes no log file of its own. The
  log file path is kept on the controller but nothing is written to it.