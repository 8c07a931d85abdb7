"""Writing the JSON, Markdown, HTML and CSV reports of a memory diff."""

from __future__ import annotations

import csv
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from memdiff.analyzer import MemoryDiff
from memdiff.report_html import generate_html_report
from memdiff.report_markdown import generate_markdown_report
from memdiff.utils import fix_file_owner

logger = logging.getLogger(__name__)

_CSV_HEADER = ("进程名", "旧内存占用 (MB)", "新内存占用 (MB)", "内存变化 (MB)")


@dataclass(frozen=True)
class ReportPaths:
    """Where each report was written."""

    json: Path
    markdown: Path
    csv: Path
    html: Path


def bytes_to_mb(num_bytes: int) -> str:
    """Bytes as mebibytes with two decimals."""
    return f"{num_bytes / (1024.0 * 1024.0):.2f}"


def generate_csv_report(diff: MemoryDiff, csv_path: str | os.PathLike[str]) -> None:
    """Write one row per new, removed and changed process to ``csv_path``."""
    with open(csv_path, "w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle, lineterminator="\n")
        writer.writerow(_CSV_HEADER)
        for name, process in diff.new_processes.items():
            mem = process.effective_memory()
            writer.writerow([name, "0", bytes_to_mb(mem), bytes_to_mb(mem)])
        for name, process in diff.removed_processes.items():
            mem = process.effective_memory()
            writer.writerow([name, bytes_to_mb(mem), "0", bytes_to_mb(-mem)])
        for name, proc_diff in diff.changed_processes.items():
            old_mem = proc_diff.old_process.effective_memory()
            new_mem = proc_diff.new_process.effective_memory()
            writer.writerow(
                [name, bytes_to_mb(old_mem), bytes_to_mb(new_mem), bytes_to_mb(new_mem - old_mem)]
            )


def generate_report(
    diff: MemoryDiff,
    output_dir: str | os.PathLike[str],
    old_identifier: str,
    new_identifier: str,
) -> ReportPaths:
    """Write all four reports into ``output_dir`` and return their paths."""
    logger.info("生成分析报告...")
    directory = Path(output_dir)
    paths = ReportPaths(
        json=directory / "diff_report.json",
        markdown=directory / "diff_report_中文.md",
        csv=directory / "process_memory_changes.csv",
        html=directory / "diff_report.html",
    )

    paths.json.write_text(
        json.dumps(diff.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8"
    )
    fix_file_owner(paths.json)

    paths.markdown.write_text(
        generate_markdown_report(diff, old_identifier, new_identifier), encoding="utf-8"
    )
    fix_file_owner(paths.markdown)

    paths.html.write_text(
        generate_html_report(diff, old_identifier, new_identifier), encoding="utf-8"
    )
    fix_file_owner(paths.html)

    generate_csv_report(diff, paths.csv)
    fix_file_owner(paths.csv)

    return paths