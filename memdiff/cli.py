"""Command-line entry point: collect a snapshot, compare two, or inspect one process."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from memdiff.analyzer import analyze
from memdiff.collector import Collector
from memdiff.reporter import ReportPaths, generate_report
from memdiff.types import CollectionResult
from memdiff.utils import fix_file_owner

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}
_VERSION = "0.1.0"


class UsageError(ValueError):
    """Raised when command-line arguments are invalid."""


@dataclass
class Args:
    """Parsed command-line arguments; exactly one of output, diff_targets, pid is set."""

    output: Path | None = None
    diff_targets: list[Path] | None = None
    log_level: str = "info"
    temp_dir: Path = Path("/tmp/memdiff")
    pid: int | None = None
    max_processes: int | None = None


def _non_negative_int(text: str) -> int:
    try:
        value = int(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid value: {text!r}") from None
    if value < 0:
        raise argparse.ArgumentTypeError(f"invalid value: {text!r}")
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="memdiff", description="对比Linux系统内存使用差异")
    parser.add_argument("--version", action="version", version=f"memdiff {_VERSION}")
    parser.add_argument(
        "output", nargs="?", type=Path, default=None,
        help="采集模式：输出目录路径，目录名作为采集说明",
    )
    parser.add_argument(
        "--diff", dest="diff_targets", nargs=2, type=Path, default=None,
        help="对比模式：指定两个数据目录或json文件进行对比",
    )
    parser.add_argument(
        "--log-level", default="info", help="日志级别 (debug, info, warn, error)"
    )
    parser.add_argument("--temp-dir", type=Path, default=Path("/tmp/memdiff"), help="临时目录")
    parser.add_argument(
        "--pid", type=int, default=None, help="单进程模式：指定进程ID，直接在终端输出采集结果"
    )
    parser.add_argument(
        "--max-processes", type=_non_negative_int, default=None,
        help="最大采集进程数量，达到后终止采集",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> Args:
    """Parse ``argv``; exits with status 2 unless exactly one mode is chosen."""
    parser = _build_parser()
    ns = parser.parse_args(argv)
    modes = [ns.output is not None, ns.diff_targets is not None, ns.pid is not None]
    if sum(modes) != 1:
        parser.error("exactly one of OUTPUT, --diff or --pid is required")
    return Args(
        output=ns.output,
        diff_targets=list(ns.diff_targets) if ns.diff_targets is not None else None,
        log_level=ns.log_level,
        temp_dir=ns.temp_dir,
        pid=ns.pid,
        max_processes=ns.max_processes,
    )


def validate(args: Args) -> None:
    """Check the arguments, creating the output directory when needed."""
    if args.log_level.lower() not in _LOG_LEVELS:
        raise UsageError("无效的日志级别，可选值: debug, info, warn, error")

    if args.output is not None and not args.output.exists():
        args.output.mkdir(parents=True)

    for target in args.diff_targets or []:
        if not target.exists():
            raise UsageError(f"指定的路径不存在: {target}")
        if target.is_dir():
            if not any(entry.suffix == ".json" for entry in target.iterdir()):
                raise UsageError(f"目录 {target} 下没有找到采集数据文件")
        elif target.suffix and target.suffix != ".json":
            raise UsageError(f"文件 {target} 不是json格式")


def find_json(target: str | os.PathLike[str]) -> Path:
    """The newest JSON file in a directory, or ``target`` itself when it is a file."""
    path = Path(target)
    if not path.is_dir():
        return path
    candidates = [entry for entry in path.iterdir() if entry.suffix == ".json"]
    if not candidates:
        raise FileNotFoundError(f"目录 {path} 中没有找到采集数据文件")
    return max(candidates, key=lambda entry: entry.stat().st_mtime)


def _load(path: Path) -> CollectionResult:
    with path.open(encoding="utf-8") as handle:
        return CollectionResult.from_dict(json.load(handle))


def handle_diff(targets: list[Path]) -> ReportPaths:
    """Compare two collections and write the reports."""
    logger.info("开始对比分析...")
    old_target, new_target = (Path(t) for t in targets)
    file1 = find_json(old_target)
    file2 = find_json(new_target)

    logger.info("对比数据文件:")
    logger.info("- %s", file1)
    logger.info("- %s", file2)

    old = _load(file1)
    new = _load(file2)

    logger.info("分析内存差异...")
    diff = analyze(old, new)

    report_dir = new_target if new_target.is_dir() else Path.cwd()

    logger.info("生成分析报告...")
    old_desc = old_target.stem or "旧数据"
    new_desc = new_target.stem or "新数据"
    paths = generate_report(diff, report_dir, old_desc, new_desc)

    logger.info("分析完成！报告已保存到以下位置:")
    logger.info("- JSON报告: %s", paths.json)
    logger.info("- 中文报告: %s", paths.markdown)
    logger.info("- CSV报告: %s", paths.csv)
    logger.info("- HTML报告: %s", paths.html)
    return paths


def handle_collect(args: Args, output_dir: Path) -> Path:
    """Collect a snapshot and save it as ``<dir>/<dir name>.json``."""
    logger.info("开始内存采集...")
    collector = Collector(args.temp_dir, args.max_processes)
    result = collector.collect()

    logger.info("保存采集数据...")
    output_dir = Path(output_dir)
    output_name = output_dir.name or "默认采集"
    data_path = output_dir / f"{output_name}.json"
    data_path.write_text(
        json.dumps(result.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8"
    )
    fix_file_owner(data_path)

    logger.info("采集完成！数据已保存到: %s", data_path)
    return data_path


def handle_single_process(pid: int) -> str:
    """Collect one process and print its summary."""
    logger.info("开始采集单个进程信息...")
    collector = Collector(Path("/tmp"), None)
    text = collector.collect_single_process(pid)
    print(f"\n{text}")
    return text


def run(args: Args) -> Path | ReportPaths | str:
    """Validate ``args`` and run the chosen mode."""
    validate(args)
    if args.output is not None:
        return handle_collect(args, args.output)
    if args.diff_targets is not None:
        return handle_diff(args.diff_targets)
    if args.pid is not None:
        return handle_single_process(args.pid)
    raise UsageError("one of OUTPUT, --diff or --pid is required")


def _setup_logging(level_name: str) -> None:
    level = _LOG_LEVELS.get(level_name, logging.INFO)
    logging.basicConfig(format="[%(levelname)-5s] %(message)s")
    logging.getLogger().setLevel(level)


def main(argv: list[str] | None = None) -> int:
    """Run the command; returns the process exit status."""
    args = parse_args(argv)
    _setup_logging(args.log_level)
    logger.info("日志系统初始化完成，级别: %s", args.log_level)
    try:
        run(args)
    except Exception as exc:  # noqa: BLE001 - every failure ends the command
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())