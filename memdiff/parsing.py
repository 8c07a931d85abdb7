"""Parsers for the text that system tools and /proc files produce."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from memdiff.types import ProcessMemInfo

_UINT_RE = re.compile(r"\+?\d+")
_INT_RE = re.compile(r"[+-]?\d+")
_HEX_RE = re.compile(r"\+?[0-9a-fA-F]+")

_KB = 1024.0
_MB = _KB * _KB
_GB = _MB * _KB


class MeminfoError(ValueError):
    """Raised when /proc/meminfo content lacks MemTotal."""


@dataclass
class ProcessStatus:
    """Fields taken from /proc/<pid>/status."""

    name: str
    user_id: int
    is_kthread: bool


def _parse_uint(text: str) -> int | None:
    return int(text) if _UINT_RE.fullmatch(text) else None


def _second_field_kb(line: str) -> int:
    parts = line.split()
    value = _parse_uint(parts[1]) if len(parts) > 1 else None
    return value or 0


def parse_meminfo(content: str) -> tuple[int, int, dict[str, int]]:
    """Return (total, used, all fields) in bytes from /proc/meminfo text."""
    total = 0
    available = 0
    fields: dict[str, int] = {}
    for line in content.splitlines():
        key, sep, rest = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        tokens = rest.split()
        if not tokens:
            continue
        kb = _parse_uint(tokens[0])
        if kb is None:
            continue
        value = kb * 1024
        fields[key] = value
        if key == "MemTotal":
            total = value
        elif key == "MemAvailable":
            available = value
    if total == 0:
        raise MeminfoError("MemTotal not found in /proc/meminfo")
    return total, total - available, fields


def format_size(num_bytes: int) -> str:
    """Human-readable size with one decimal, in B, KB, MB or GB."""
    value = float(num_bytes)
    if value >= _GB:
        return f"{value / _GB:.1f} GB"
    if value >= _MB:
        return f"{value / _MB:.1f} MB"
    if value >= _KB:
        return f"{value / _KB:.1f} KB"
    return f"{num_bytes} B"


def parse_memory_range(line: str) -> int | None:
    """Size of the address range that starts a /proc maps line."""
    tokens = line.split()
    if not tokens:
        return None
    parts = tokens[0].split("-")
    if len(parts) != 2 or not all(_HEX_RE.fullmatch(p) for p in parts):
        return None
    start, end = (int(p, 16) for p in parts)
    return end - start


def parse_smaps(content: str) -> ProcessMemInfo:
    """Sum the memory counters of a /proc/<pid>/smaps file."""
    info = ProcessMemInfo()
    text_kb = 0
    data_kb = 0
    in_text = False
    in_data = False
    for line in content.splitlines():
        if " r-xp " in line:
            in_text, in_data = True, False
        elif " rw-p " in line:
            in_text, in_data = False, True
        elif line.startswith("Size:"):
            kb = _second_field_kb(line)
            if in_text:
                text_kb += kb
            elif in_data:
                data_kb += kb
        elif line.startswith("Pss:"):
            info.pss += _second_field_kb(line) * 1024
        elif line.startswith("Rss:"):
            info.rss += _second_field_kb(line) * 1024
        elif line.startswith(("Private_Clean:", "Private_Dirty:")):
            info.private += _second_field_kb(line) * 1024
        elif line.startswith(("Shared_Clean:", "Shared_Dirty:")):
            info.shared += _second_field_kb(line) * 1024
        elif line.startswith("Swap:"):
            info.swap += _second_field_kb(line) * 1024
        elif line.startswith("Referenced:"):
            info.cache += _second_field_kb(line) * 1024
    info.text_size = text_kb * 1024
    info.data_size = data_kb * 1024
    return info


def _status_field(lines: list[str], prefix: str) -> str | None:
    line = next((ln for ln in lines if ln.startswith(prefix)), None)
    if line is None:
        return None
    parts = line.split()
    return parts[1] if len(parts) > 1 else None


def parse_status(content: str, default_uid: int) -> ProcessStatus:
    """Name, real uid and kernel-thread flag from /proc/<pid>/status."""
    lines = content.splitlines()
    name = _status_field(lines, "Name:") or "unknown"
    uid_text = _status_field(lines, "Uid:")
    uid = _parse_uint(uid_text) if uid_text is not None else None
    if uid is None or uid >= 2**32:
        uid = default_uid
    is_kthread = _status_field(lines, "Kthread:") == "1"
    return ProcessStatus(name=name, user_id=uid, is_kthread=is_kthread)


def parse_fd_listing(content: str) -> list[tuple[str, str]]:
    """(access mode, link target) pairs from ``ls -l /proc/<pid>/fd/``."""
    entries = []
    for line in content.splitlines():
        parts = line.split()
        if len(parts) < 9:
            continue
        pieces = line.split(" -> ")
        if len(pieces) < 2:
            continue
        entries.append((parts[0], pieces[1].strip()))
    return entries


def classify_file_type(path: str) -> str:
    if path.startswith("socket:"):
        return "socket"
    if path.startswith("pipe:"):
        return "pipe"
    return "regular"


def library_paths(maps_content: str) -> list[str]:
    """Distinct shared-library paths, in order of first appearance in a maps file."""
    seen: dict[str, None] = {}
    for line in maps_content.splitlines():
        if ".so" in line and "/" in line:
            seen.setdefault(line.split()[-1], None)
    return list(seen)


def parse_kernel_config(content: str) -> dict[str, str]:
    """CONFIG_* assignments from a kernel configuration file."""
    config = {}
    for line in content.splitlines():
        if not line.startswith("CONFIG_"):
            continue
        key, sep, value = line.partition("=")
        if sep:
            config[key.strip()] = value.strip()
    return config


def parse_modinfo_params(module: str, content: str) -> dict[str, str]:
    """Module parameters from ``modinfo`` output, keyed MODULE_<NAME>_PARAM_<param>."""
    params = {}
    module_name = module.strip().upper()
    for line in content.splitlines():
        if not line.startswith("parm:"):
            continue
        key, sep, value = line[5:].partition(":")
        if sep:
            params[f"MODULE_{module_name}_PARAM_{key.strip()}"] = value.strip()
    return params


def parse_ipcs_total(content: str) -> int:
    """Total bytes of SysV shared memory segments listed by ``ipcs -m``."""
    total = 0
    for line in content.splitlines()[3:]:
        parts = line.split()
        if len(parts) > 4:
            size = _parse_uint(parts[4])
            if size is not None:
                total += size
    return total


def parse_os_release(output: str) -> str:
    """The PRETTY_NAME value from a line of /etc/os-release."""
    text = output.strip()
    prefix = "PRETTY_NAME="
    value = text[len(prefix):] if text.startswith(prefix) else ""
    return value.strip('"')


def parse_cpu_model(output: str) -> str:
    """The CPU model from a ``model name`` line of /proc/cpuinfo."""
    text = output.strip()
    prefix = "model name"
    value = text[len(prefix):] if text.startswith(prefix) else ""
    return value.strip(": ")


def parse_ps_output(content: str) -> list[tuple[int, str]]:
    """(pid, command) pairs from ``ps -e -o pid=,rss=,comm=`` output."""
    processes = []
    for line in content.splitlines():
        parts = line.split()
        if len(parts) < 3 or not _INT_RE.fullmatch(parts[0]):
            continue
        pid = int(parts[0])
        if -(2**31) <= pid < 2**31:
            processes.append((pid, parts[2]))
    return processes


def find_boot_param(cmdline: str, prefixes: Iterable[str]) -> str | None:
    """Value of the first kernel command-line word that starts with one of ``prefixes``."""
    prefixes = tuple(prefixes)
    for part in cmdline.split():
        for prefix in prefixes:
            if part.startswith(prefix):
                return part[len(prefix):]
    return None


def prioritize_paths(
    paths: Iterable[str],
    current_path: str | None,
    kernel_version: str | None,
) -> list[str]:
    """Order candidate boot files so the one most likely in use comes first."""
    ordered = [p for p in paths if p]
    if current_path is not None:
        match = next((p for p in ordered if current_path in p), None)
        if match is not None:
            ordered.remove(match)
            ordered.insert(0, match)
        else:
            ordered.insert(0, current_path)
    elif kernel_version is not None:
        ordered.sort(key=lambda p: kernel_version not in p)
    return ordered