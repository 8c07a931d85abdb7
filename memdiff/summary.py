"""Grouping and totalling the processes of a memory diff for reports."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from memdiff.analyzer import MemoryDiff
from memdiff.types import ProcessInfo, is_kernel_process


class ProcessChangeType(Enum):
    NEW = "new"
    REMOVED = "removed"
    CHANGED = "changed"


@dataclass(frozen=True)
class ProcessEntry:
    """One process in a report, with its signed memory change."""

    name: str
    memory: int
    change_type: ProcessChangeType
    process: ProcessInfo


@dataclass(frozen=True)
class MemoryTotals:
    """Memory of new and removed processes, and net change of the others."""

    new: int
    removed: int
    changed: int


def _pick_name(release: str, identifier: str, fallback: str) -> str:
    if release.strip():
        return release
    if identifier.strip():
        return identifier
    return fallback


def display_names(diff: MemoryDiff, old_identifier: str, new_identifier: str) -> tuple[str, str]:
    """Names for the two sides: OS release, else the identifier, else a default."""
    return (
        _pick_name(diff.old_os_release, old_identifier, "旧系统"),
        _pick_name(diff.new_os_release, new_identifier, "新系统"),
    )


def memory_totals(diff: MemoryDiff) -> MemoryTotals:
    return MemoryTotals(
        new=sum(p.effective_memory() for p in diff.new_processes.values()),
        removed=sum(p.effective_memory() for p in diff.removed_processes.values()),
        changed=sum(d.memory_diff for d in diff.changed_processes.values()),
    )


def classify_processes(
    diff: MemoryDiff,
) -> tuple[list[ProcessEntry], list[ProcessEntry], list[ProcessEntry]]:
    """Kernel, system and user entries, each ordered by largest change first."""
    entries = [
        ProcessEntry(name, p.effective_memory(), ProcessChangeType.NEW, p)
        for name, p in diff.new_processes.items()
    ]
    entries.extend(
        ProcessEntry(name, -p.effective_memory(), ProcessChangeType.REMOVED, p)
        for name, p in diff.removed_processes.items()
    )
    entries.extend(
        ProcessEntry(name, d.memory_diff, ProcessChangeType.CHANGED, d.new_process)
        for name, d in diff.changed_processes.items()
    )

    kernel: list[ProcessEntry] = []
    system: list[ProcessEntry] = []
    user: list[ProcessEntry] = []
    for entry in entries:
        if is_kernel_process(entry.process):
            kernel.append(entry)
        elif entry.process.user_id == diff.current_user_id:
            user.append(entry)
        else:
            system.append(entry)

    for group in (kernel, system, user):
        group.sort(key=lambda e: -abs(e.memory))
    return kernel, system, user


def split_by_change(
    entries: list[ProcessEntry],
) -> tuple[list[ProcessEntry], list[ProcessEntry], list[ProcessEntry]]:
    """New, removed and changed entries, keeping their order."""
    by_type: dict[ProcessChangeType, list[ProcessEntry]] = {t: [] for t in ProcessChangeType}
    for entry in entries:
        by_type[entry.change_type].append(entry)
    return (
        by_type[ProcessChangeType.NEW],
        by_type[ProcessChangeType.REMOVED],
        by_type[ProcessChangeType.CHANGED],
    )