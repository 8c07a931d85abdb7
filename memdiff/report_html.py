"""The Chinese HTML report of a memory diff."""

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

_HEAD = """<!DOCTYPE html>
<html lang="zh">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>内存使用差异分析报告</title>
    <style>
        :root {
            --primary-color: #2196F3;
            --success-color: #4CAF50;
            --danger-color: #F44336;
            --bg-color: #FFFFFF;
            --text-color: #333333;
        }
        body {
            font-family: system-ui, -apple-system, sans-serif;
            line-height: 1.6;
            color: var(--text-color);
            background: var(--bg-color);
            max-width: 1200px;
            margin: 0 auto;
            padding: 20px;
        }
        h1, h2, h3, h4 {
            color: var(--primary-color);
            margin-top: 1.5em;
        }
        h1 { font-size: 2em; border-bottom: 2px solid var(--primary-color); }
        h2 { font-size: 1.75em; }
        h3 { font-size: 1.5em; }
        h4 { font-size: 1.25em; }
        .summary-card {
            background: #f5f5f5;
            border-radius: 8px;
            padding: 20px;
            margin: 20px 0;
            box-shadow: 0 2px 4px rgba(0,0,0,0.1);
        }
        .process-card {
            border: 1px solid #ddd;
            border-radius: 8px;
            padding: 15px;
            margin: 10px 0;
            background: white;
        }
        .increase { color: var(--danger-color); }
        .decrease { color: var(--success-color); }
        .stat-grid {
            display: grid;
            grid-template-columns: repeat(auto-fit, minmax(200px, 1fr));
            gap: 20px;
            margin: 20px 0;
        }
        .stat-item {
            padding: 10px;
            background: #f8f9fa;
            border-radius: 4px;
            text-align: center;
        }
        .library-list {
            list-style: none;
            padding-left: 20px;
        }
        .library-list li {
            margin: 5px 0;
        }
        @media (max-width: 768px) {
            body { padding: 10px; }
            .stat-grid { grid-template-columns: 1fr; }
        }
    </style>
</head>
<body>"""


def _card(heading: str, entry: ProcessEntry) -> Iterator[str]:
    yield "<div class='process-card'>"
    yield heading
    yield f"<p>可执行文件路径：{entry.process.exe_path}</p>"
    yield f"<p>打开文件数：{len(entry.process.open_files)}</p>"
    yield f"<p>加载动态库：{len(entry.process.libraries)} 个</p>"
    yield "</div>"


def _process_details(entries: list[ProcessEntry]) -> Iterator[str]:
    new, removed, changed = split_by_change(entries)
    if new:
        yield "<h3>新增进程</h3>"
        for entry in new:
            heading = (
                f"<h4>{entry.name} <span class='increase'>⬆ "
                f"{format_bytes(abs(entry.memory))}</span></h4>"
            )
            yield from _card(heading, entry)
    if removed:
        yield "<h3>移除进程</h3>"
        for entry in removed:
            heading = (
                f"<h4>{entry.name} <span class='decrease'>⬇ "
                f"{format_bytes(abs(entry.memory))}</span></h4>"
            )
            yield from _card(heading, entry)
    if changed:
        yield "<h3>变化进程</h3>"
        for entry in changed:
            if entry.memory > 0:
                symbol, css = "⬆", "increase"
            else:
                symbol, css = "⬇", "decrease"
            heading = (
                f"<h4>{entry.name} <span class='{css}'>{symbol} "
                f"{format_bytes(abs(entry.memory))}</span></h4>"
            )
            yield from _card(heading, entry)


def _library_item(change: LibraryChange) -> str | None:
    old, new = change.old_path, change.new_path
    if old is not None and new is not None:
        if old == new:
            css = "increase" if change.size_diff > 0 else "decrease"
            return (
                f"<li>库大小变化 {old}: <span class='{css}'>"
                f"{format_bytes(change.size_diff)}</span></li>"
            )
        return f"<li>库路径变更：{old} → {new}</li>"
    if old is not None:
        return f"<li class='decrease'>移除库 {old}</li>"
    if new is not None:
        return f"<li class='increase'>新增库 {new}</li>"
    return None


def _changed_details(name: str, proc_diff: ProcessDiff) -> Iterator[str]:
    delta = proc_diff.memory_diff
    if delta > 0:
        symbol, css = "⬆", "increase"
        change = f"增加 {format_bytes(delta)}"
    else:
        symbol, css = "⬇", "decrease"
        change = f"减少 {format_bytes(-delta)}"
    yield "<div class='process-card'>"
    yield f"<h3>{name} <span class='{css}'>{symbol} {format_bytes(delta)}</span></h3>"
    old_mem = format_bytes(proc_diff.old_process.effective_memory())
    new_mem = format_bytes(proc_diff.new_process.effective_memory())
    yield f"<p>内存使用变化：{old_mem} → {new_mem} <span class='{css}'>({change})</span></p>"
    if proc_diff.exe_size_diff != 0:
        yield f"<p>可执行文件大小变化：{format_bytes(proc_diff.exe_size_diff)}</p>"
    if proc_diff.open_files_diff != 0:
        yield f"<p>打开文件数变化：{proc_diff.open_files_diff:+d}</p>"
    if proc_diff.library_changes:
        yield "<h4>动态库变化</h4>"
        yield "<ul class='library-list'>"
        for lib in proc_diff.library_changes:
            item = _library_item(lib)
            if item is not None:
                yield item
        yield "</ul>"
    yield "</div>"


def generate_html_report(diff: MemoryDiff, old_identifier: str, new_identifier: str) -> str:
    """Render ``diff`` as a self-contained HTML page."""
    old_name, new_name = display_names(diff, old_identifier, new_identifier)
    totals = memory_totals(diff)
    changed_css = "increase" if totals.changed > 0 else "decrease"
    total_css = "increase" if diff.total_diff > 0 else "decrease"

    parts = [
        _HEAD,
        "<h1>内存使用差异分析报告</h1>",
        "<div class='summary-card'>",
        f"<p>本报告对比了 <strong>{old_name}</strong> 和 <strong>{new_name}</strong> "
        "之间的内存使用变化。</p>",
        "<h2>系统概述</h2>",
        "<div class='stat-grid'>",
        "\n"
        f"            <div class='stat-item'>新增进程数量<br><strong>{len(diff.new_processes)}"
        "</strong></div>\n"
        f"            <div class='stat-item'>移除进程数量<br><strong>{len(diff.removed_processes)}"
        "</strong></div>\n"
        f"            <div class='stat-item'>变化进程数量<br><strong>{len(diff.changed_processes)}"
        "</strong></div>\n"
        "        ",
        "</div>",
        "<h3>内存变化概要</h3>",
        "<div class='stat-grid'>",
        "\n"
        "            <div class='stat-item'>新增进程内存<br><strong class='increase'>"
        f"+{format_bytes(totals.new)}</strong></div>\n"
        "            <div class='stat-item'>移除进程内存<br><strong class='decrease'>"
        f"-{format_bytes(totals.removed)}</strong></div>\n"
        f"            <div class='stat-item'>变化进程内存<br><strong class='{changed_css}'>"
        f"{format_bytes(totals.changed)}</strong></div>\n"
        f"            <div class='stat-item'>总内存变化<br><strong class='{total_css}'>"
        f"{format_bytes(diff.total_diff)}</strong></div>\n"
        "        ",
        "</div>",
        "</div>",
    ]

    kernel, system, user = classify_processes(diff)
    for title, group in (
        ("<h2>内核进程变化</h2>", kernel),
        ("<h2>系统进程变化</h2>", system),
        ("<h2>用户进程变化</h2>", user),
    ):
        if group:
            parts.append(title)
            parts.extend(_process_details(group))

    if diff.changed_processes:
        parts.append("<h2>进程详细变化</h2>")
        for name, proc_diff in diff.changed_processes.items():
            parts.extend(_changed_details(name, proc_diff))

    parts.append("</body></html>")
    return "".join(parts)