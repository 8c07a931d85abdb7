"""Comparing two collection results and describing how memory use changed."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import asdict, dataclass, field
from typing import Any

from memdiff.types import (
    CollectionResult,
    LibraryInfo,
    ProcessInfo,
    SystemInfo,
    is_kernel_process,
)

logger = logging.getLogger(__name__)

_ALPHA_RE = re.compile(r"[a-zA-Z]+")
_DECIMAL_UNITS = ("KB", "MB", "GB", "TB", "PB", "EB", "ZB")


@dataclass
class LibraryChange:
    """A shared library that was added, removed or resized."""

    old_path: str | None
    new_path: str | None
    size_diff: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ProcessDiff:
    """How one process present on both sides changed."""

    old_process: ProcessInfo
    new_process: ProcessInfo
    memory_diff: int
    library_changes: list[LibraryChange] = field(default_factory=list)
    exe_size_diff: int = 0
    open_files_diff: int = 0
    shared_memory_diff: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "old_process": self.old_process.to_dict(),
            "new_process": self.new_process.to_dict(),
            "memory_diff": self.memory_diff,
            "library_changes": [change.to_dict() for change in self.library_changes],
            "exe_size_diff": self.exe_size_diff,
            "open_files_diff": self.open_files_diff,
            "shared_memory_diff": self.shared_memory_diff,
        }


@dataclass
class SystemDiff:
    """System-wide differences between two snapshots."""

    pagesize_diff: int
    kernel_version_changed: bool
    shared_memory_diff: int
    old_kernel_size: int | None = None
    new_kernel_size: int | None = None
    old_initramfs_size: int | None = None
    new_initramfs_size: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MemoryDiff:
    """The complete comparison of two collection results."""

    total_diff: int
    system_changes: SystemDiff
    current_user_id: int
    old_os_release: str
    new_os_release: str
    old_system_info: SystemInfo
    new_system_info: SystemInfo
    new_processes: dict[str, ProcessInfo] = field(default_factory=dict)
    removed_processes: dict[str, ProcessInfo] = field(default_factory=dict)
    changed_processes: dict[str, ProcessDiff] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_diff": self.total_diff,
            "new_processes": {k: p.to_dict() for k, p in self.new_processes.items()},
            "removed_processes": {k: p.to_dict() for k, p in self.removed_processes.items()},
            "changed_processes": {k: d.to_dict() for k, d in self.changed_processes.items()},
            "system_changes": self.system_changes.to_dict(),
            "current_user_id": self.current_user_id,
            "old_os_release": self.old_os_release,
            "new_os_release": self.new_os_release,
            "old_system_info": self.old_system_info.to_dict(),
            "new_system_info": self.new_system_info.to_dict(),
        }


def extract_base_name(path: str) -> str:
    """The letters of the file name in ``path``, joined and lower-cased."""
    file_name = path.split("/")[-1]
    return "".join(_ALPHA_RE.findall(file_name)).lower()


def _format_float(value: float) -> str:
    if value.is_integer():
        return str(int(value))
    return repr(value)


def format_bytes(num_bytes: int) -> str:
    """Signed size in the largest decimal unit that fits."""
    magnitude = abs(num_bytes)
    value = float(magnitude)
    unit = "B"
    for power, name in enumerate(_DECIMAL_UNITS, start=1):
        threshold = 1000**power
        if magnitude >= threshold:
            value = float(magnitude) / float(threshold)
            unit = name
    sign = "-" if num_bytes < 0 else ""
    return f"{sign}{_format_float(value)} {unit}"


def _match_key(process: ProcessInfo) -> str:
    if is_kernel_process(process):
        return process.name
    return extract_base_name(process.exe_path)


def _library_changes(
    old_libraries: list[LibraryInfo], new_libraries: list[LibraryInfo]
) -> list[LibraryChange]:
    old_libs = {extract_base_name(lib.path): lib for lib in old_libraries}
    new_libs = {extract_base_name(lib.path): lib for lib in new_libraries}
    changes = []
    for base, old_lib in old_libs.items():
        new_lib = new_libs.get(base)
        if new_lib is None:
            changes.append(LibraryChange(old_lib.path, None, -old_lib.size))
        elif new_lib.size != old_lib.size:
            changes.append(LibraryChange(old_lib.path, new_lib.path, new_lib.size - old_lib.size))
    changes.extend(
        LibraryChange(None, new_lib.path, new_lib.size)
        for base, new_lib in new_libs.items()
        if base not in old_libs
    )
    return changes


def _process_diff(old_proc: ProcessInfo, new_proc: ProcessInfo) -> ProcessDiff:
    if new_proc.mem_info.pss > 0 and old_proc.mem_info.pss > 0:
        memory_diff = new_proc.mem_info.pss - old_proc.mem_info.pss
    else:
        memory_diff = new_proc.mem_info.rss - old_proc.mem_info.rss
    return ProcessDiff(
        old_process=old_proc,
        new_process=new_proc,
        memory_diff=memory_diff,
        library_changes=_library_changes(old_proc.libraries, new_proc.libraries),
        exe_size_diff=new_proc.exe_size - old_proc.exe_size,
        open_files_diff=len(new_proc.open_files) - len(old_proc.open_files),
        shared_memory_diff=new_proc.shared_memory - old_proc.shared_memory,
    )


def _compare_processes(
    old_processes: dict[int, ProcessInfo],
    new_processes: dict[int, ProcessInfo],
    diff: MemoryDiff,
) -> None:
    logger.debug("分析进程变化...")
    old_keyed = [(proc.pid, _match_key(proc), proc) for proc in old_processes.values()]
    logger.debug(
        "原始的旧进程数量: %d, 原始的新进程数量: %d", len(old_processes), len(new_processes)
    )

    used_pids: set[int] = set()
    for new_proc in new_processes.values():
        key = _match_key(new_proc)
        match = next(
            (proc for pid, old_key, proc in old_keyed if old_key == key and pid not in used_pids),
            None,
        )
        if match is None:
            diff.new_processes[new_proc.hash_key_string()] = new_proc
            continue
        used_pids.add(match.pid)
        name = f"{match.hash_key_string()} -> {new_proc.hash_key_string()}"
        diff.changed_processes[name] = _process_diff(match, new_proc)

    for pid, _key, old_proc in old_keyed:
        if pid not in used_pids:
            diff.removed_processes[old_proc.hash_key_string()] = old_proc


def analyze(
    old: CollectionResult,
    new: CollectionResult,
    current_user_id: int | None = None,
) -> MemoryDiff:
    """Compare two collection results; ``current_user_id`` defaults to the effective uid."""
    logger.info("开始分析内存差异...")
    old_info = old.system_info
    new_info = new.system_info
    system_changes = SystemDiff(
        pagesize_diff=new_info.page_size - old_info.page_size,
        kernel_version_changed=old_info.kernel_version != new_info.kernel_version,
        shared_memory_diff=new_info.total_shared_memory - old_info.total_shared_memory,
        old_kernel_size=old_info.kernel_file_size,
        new_kernel_size=new_info.kernel_file_size,
        old_initramfs_size=old_info.initrd_file_size,
        new_initramfs_size=new_info.initrd_file_size,
    )
    diff = MemoryDiff(
        total_diff=new_info.used_memory - old_info.used_memory,
        system_changes=system_changes,
        current_user_id=os.geteuid() if current_user_id is None else current_user_id,
        old_os_release=old_info.os_release,
        new_os_release=new_info.os_release,
        old_system_info=old_info,
        new_system_info=new_info,
    )
    _compare_processes(old.processes, new.processes, diff)
    return diff