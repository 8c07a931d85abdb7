# memdiff

Compare memory usage of a Linux system between two points in time, or
between two machines.

memdiff works in three modes:

- **Collect** a snapshot of system memory: `/proc/meminfo`, SysV shared
  memory, kernel and initramfs file sizes, kernel configuration, and for
  every process its PSS/RSS and other smaps counters, shared memory, open
  files and loaded shared libraries.
- **Diff** two snapshots and write reports describing new, removed and
  changed processes, library changes and the overall memory change.
- **Inspect** a single process and print its details to the terminal.

## Installation

```
pip install .
```

The package has no third-party dependencies. It runs on Linux and calls
standard tools (`sh`, `sudo`, `ps`, `stat`, `find`, `ipcs`, `uname`, ...).

## Sudo access

Collection and single-process inspection read `/proc` through `sudo`. On
first use the command runs `sudo -v` and then writes a file
`/etc/sudoers.d/<user>` granting the current user `NOPASSWD: ALL`, so that
the many following `sudo` calls do not prompt. Be aware of this before
running a collection on a machine you care about. Diffing snapshots does not
use `sudo`.

Files the command writes (snapshots and reports) are handed to the real
user: when run under `sudo`, the owner is taken from `SUDO_UID` and
`SUDO_GID`.

## Usage

Collect a snapshot. The directory is created if needed, its name doubles as
the description of the snapshot, and the data is saved as `<dir>/<dir>.json`:

```
memdiff baseline
memdiff after-upgrade --max-processes 200
```

Processes are collected in order of RSS, largest first, and a progress line
is printed as they are gathered.

Compare two snapshots, given either as directories (the most recently
modified JSON file in each is used) or as JSON files directly:

```
memdiff --diff baseline after-upgrade
```

Processes are matched between the two snapshots by name for kernel threads
and by the letters of the executable's file name otherwise, so version
numbers in a path do not break the match. The reports are written into the
second directory, or into the current directory when the second target is a
file:

- `diff_report.json` — the full diff as JSON
- `diff_report_中文.md` — Markdown report (in Chinese)
- `diff_report.html` — HTML report (in Chinese)
- `process_memory_changes.csv` — per-process memory change in MB

Inspect one process:

```
memdiff --pid 1234
```

### Options

| Option | Default | Meaning |
| --- | --- | --- |
| `--log-level` | `info` | One of `debug`, `info`, `warn`, `error` |
| `--temp-dir` | `/tmp/memdiff` | Working directory used during collection |
| `--max-processes` | none | Collect at most this many processes, largest RSS first |
| `--version` | | Print the version and exit |

Exactly one of an output directory, `--diff` or `--pid` must be given. The
command exits with status 1 when a step fails and 2 on invalid arguments.

## Library use

The pieces are importable on their own:

```python
import json
from memdiff.types import CollectionResult
from memdiff.analyzer import analyze
from memdiff.reporter import generate_report

with open("baseline/baseline.json") as fh:
    old = CollectionResult.from_dict(json.load(fh))
with open("after-upgrade/after-upgrade.json") as fh:
    new = CollectionResult.from_dict(json.load(fh))

diff = analyze(old, new)
paths = generate_report(diff, "after-upgrade", "baseline", "after-upgrade")
print(paths.markdown)
```

- `memdiff.types` — the snapshot records (`CollectionResult`, `SystemInfo`,
  `ProcessInfo`, ...) with `to_dict` / `from_dict`.
- `memdiff.collector.Collector` — gathers a snapshot; it takes any executor
  object with `execute_command` and `execute_sudo_command` methods, by
  default `memdiff.local.LocalExecutor`.
- `memdiff.parsing` — parsers for `/proc` files and tool output.
- `memdiff.analyzer` — `analyze`, `extract_base_name`, `format_bytes`.
- `memdiff.report_markdown`, `memdiff.report_html`, `memdiff.reporter` —
  the report generators.

`generate_report` changes each report's owner with `fix_file_owner`, so the
output directory must allow that for the current user.

## Limitations

- Processes are collected one after another, not in parallel.
- `skipped_processes` is always recorded as 0, and a library's
  `loaded_size` is always 0.
- Only Linux is supported.

## Running the tests

```
pip install ".[test]"
pytest
```