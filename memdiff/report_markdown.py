"""The Chinese Markdown report of a memory diff."""

from __future__ import annotations

from collections.abc import Iterator

from memdiff.analyzer import LibraryChange, MemoryDiff, ProcessDiff, format_bytes
from memdiff.summary import (
    ProcessEntry,
    classify_processes,
    display_names,
    memory_totals,
    split_by_change,
)


def _entry_lines(heading: str, entry: ProcessEntry) -> Iterator[str]:
    yield heading
    yield f"- 可执行文件路径：{entry.process.exe_path}\n"
    yield f"- 打开文件数：{len(entry.process.open_files)}\n"
    yield f"- 加载动态库：{len(entry.process.libraries)} 个\n"
    yield "\n"


def _process_details(entries: list[ProcessEntry]) -> Iterator[str]:
    new, removed, changed = split_by_change(entries)
    if new:
        yield "### 新增进程\n\n"
        for entry in new:
            heading = f"#### {entry.name} (🔴 +{format_bytes(abs(entry.memory))})\n"
            yield from _entry_lines(heading, entry)
    if removed:
        yield "### 移除进程\n\n"
        for entry in removed:
            heading = f"#### {entry.name} (🟢 {format_bytes(-abs(entry.memory))})\n"
            yield from _entry_lines(heading, entry)
    if changed:
        yield "### 变化进程\n\n"
        for entry in changed:
            color = "🔴" if entry.memory > 0 else "🟢"
            heading = f"#### {entry.name} ({color} {format_bytes(entry.memory)})\n"
            yield from _entry_lines(heading, entry)


def _library_line(change: LibraryChange) -> str | None:
    old, new = change.old_path, change.new_path
    if old is not None and new is not None:
        if old == new:
            return f"  - 库大小变化 {old}：{format_bytes(change.size_diff)}\n"
        return f"  - 库路径变更：{old} -> {new}\n"
    if old is not None:
        return f"  - 🟢移除库 {old}\n"
    if new is not None:
        return f"  - 🔴新增库 {new}\n"
    return None


def _changed_details(name: str, proc_diff: ProcessDiff) -> Iterator[str]:
    delta = proc_diff.memory_diff
    symbol = "🔴" if delta > 0 else "🟢"
    yield f"### {name} ({symbol} {format_bytes(delta)})\n"
    change = f"增加 {format_bytes(delta)}" if delta > 0 else f"减少 {format_bytes(-delta)}"
    old_mem = format_bytes(proc_diff.old_process.effective_memory())
    new_mem = format_bytes(proc_diff.new_process.effective_memory())
    yield f"- 内存使用变化：{old_mem} -> {new_mem} ({change})\n"
    if proc_diff.exe_size_diff != 0:
        yield f"- 可执行文件大小变化：{format_bytes(proc_diff.exe_size_diff)}\n"
    if proc_diff.open_files_diff != 0:
        yield f"- 打开文件数变化：{proc_diff.open_files_diff:+d}\n"
    if proc_diff.library_changes:
        yield "- 动态库变化：\n"
        for lib in proc_diff.library_changes:
            line = _library_line(lib)
            if line is not None:
                yield line
    yield "\n"


def generate_markdown_report(diff: MemoryDiff, old_identifier: str, new_identifier: str) -> str:
    """Render ``diff`` as a Markdown document."""
    old_name, new_name = display_names(diff, old_identifier, new_identifier)
    totals = memory_totals(diff)

    parts = [
        "# 内存使用差异分析报告\n\n",
        "## 系统概述\n\n",
        f"本报告对比了 {old_name} 和 {new_name} 之间的内存使用变化。\n\n",
        "### 进程变化统计\n\n",
        f"- 新增进程数量：{len(diff.new_processes)}\n",
        f"- 移除进程数量：{len(diff.removed_processes)}\n",
        f"- 变化进程数量：{len(diff.changed_processes)}\n\n",
        "### 内存变化概要\n\n",
        f"- 新增进程内存：{format_bytes(totals.new)}\n",
        f"- 移除进程内存：{format_bytes(-totals.removed)}\n",
        f"- 变化进程内存：{format_bytes(totals.changed)}\n",
        f"- 总内存变化：{format_bytes(diff.total_diff)}\n\n",
    ]

    kernel, system, user = classify_processes(diff)
    for title, group in (
        ("## 内核进程变化\n\n", kernel),
        ("## 系统进程变化\n\n", system),
        ("## 用户进程变化\n\n", user),
    ):
        if group:
            parts.append(title)
            parts.extend(_process_details(group))

    if diff.changed_processes:
        parts.append("## 进程详细变化\n\n")
        for name, proc_diff in diff.changed_processes.items():
            parts.extend(_changed_details(name, proc_diff))

    return "".join(parts)