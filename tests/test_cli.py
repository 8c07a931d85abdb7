import json
import os
import subprocess
from pathlib import Path

import pytest

from memdiff.cli import (
    Args,
    UsageError,
    find_json,
    handle_diff,
    handle_single_process,
    main,
    parse_args,
    run,
    validate,
)
from memdiff.types import CollectionResult, ProcessInfo, ProcessMemInfo, SystemInfo


def _result(os_release, used, pss):
    info = SystemInfo(
        hostname="host",
        kernel_version="6.1",
        os_release=os_release,
        page_size=4096,
        total_memory=8 * 1024 * 1024,
        used_memory=used,
    )
    proc = ProcessInfo(
        pid=1,
        name="init",
        exe_path="/sbin/init",
        exe_size=100,
        mem_info=ProcessMemInfo(pss=pss, rss=pss),
    )
    return CollectionResult(system_info=info, processes={1: proc})


def _write(path, result):
    path.write_text(json.dumps(result.to_dict()), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _no_sudo_env(monkeypatch):
    monkeypatch.delenv("SUDO_UID", raising=False)
    monkeypatch.delenv("SUDO_GID", raising=False)


def test_parse_args_collect_mode_defaults():
    args = parse_args(["snapshot"])
    assert args.output == Path("snapshot")
    assert args.diff_targets is None
    assert args.pid is None
    assert args.log_level == "info"
    assert args.temp_dir == Path("/tmp/memdiff")
    assert args.max_processes is None


def test_parse_args_diff_mode():
    args = parse_args(["--diff", "a", "b", "--log-level", "debug"])
    assert args.diff_targets == [Path("a"), Path("b")]
    assert args.output is None
    assert args.log_level == "debug"


def test_parse_args_pid_and_limit():
    args = parse_args(["--pid", "42", "--max-processes", "5", "--temp-dir", "/var/tmp/x"])
    assert args.pid == 42
    assert args.max_processes == 5
    assert args.temp_dir == Path("/var/tmp/x")


@pytest.mark.parametrize(
    "argv",
    [
        [],
        ["out", "--pid", "3"],
        ["--diff", "a", "b", "--pid", "1"],
        ["--pid", "1", "--max-processes", "-1"],
    ],
)
def test_parse_args_rejects_bad_modes(argv):
    with pytest.raises(SystemExit) as info:
        parse_args(argv)
    assert info.value.code == 2


def test_validate_rejects_unknown_log_level():
    with pytest.raises(UsageError):
        validate(Args(pid=1, log_level="verbose"))


def test_validate_accepts_upper_case_level_and_creates_output(tmp_path):
    out = tmp_path / "a" / "b"
    validate(Args(output=out, log_level="DEBUG"))
    assert out.is_dir()


def test_validate_missing_target(tmp_path):
    with pytest.raises(UsageError):
        validate(Args(diff_targets=[tmp_path / "missing.json", tmp_path / "other.json"]))


def test_validate_directory_without_json(tmp_path):
    (tmp_path / "notes.txt").write_text("x")
    with pytest.raises(UsageError):
        validate(Args(diff_targets=[tmp_path, tmp_path]))


def test_validate_non_json_file(tmp_path):
    bad = tmp_path / "data.txt"
    bad.write_text("x")
    with pytest.raises(UsageError):
        validate(Args(diff_targets=[bad, bad]))


def test_validate_accepts_file_without_extension(tmp_path):
    plain = tmp_path / "data"
    plain.write_text("{}")
    args = Args(diff_targets=[plain, plain])
    validate(args)
    assert args.diff_targets == [plain, plain]


def test_find_json_picks_newest(tmp_path):
    older = tmp_path / "old.json"
    newer = tmp_path / "new.json"
    other = tmp_path / "later.txt"
    for path in (older, newer, other):
        path.write_text("{}")
    os.utime(older, (1_000_000, 1_000_000))
    os.utime(newer, (2_000_000, 2_000_000))
    os.utime(other, (3_000_000, 3_000_000))
    assert find_json(tmp_path) == newer


def test_find_json_file_returned_unchanged(tmp_path):
    target = tmp_path / "x.json"
    assert find_json(target) == target


def test_find_json_empty_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        find_json(tmp_path)


def test_handle_diff_writes_reports_into_second_directory(tmp_path):
    old_dir = tmp_path / "before"
    new_dir = tmp_path / "after"
    old_dir.mkdir()
    new_dir.mkdir()
    _write(old_dir / "before.json", _result("Old OS", 1000, 2048))
    _write(new_dir / "after.json", _result("New OS", 3000, 4096))

    paths = handle_diff([old_dir, new_dir])

    assert paths.json.parent == new_dir
    assert paths.json.name == "diff_report.json"
    assert paths.markdown.name == "diff_report_中文.md"
    assert paths.csv.name == "process_memory_changes.csv"
    assert paths.html.name == "diff_report.html"
    report = json.loads(paths.json.read_text(encoding="utf-8"))
    assert report["old_os_release"] == "Old OS"
    assert report["new_os_release"] == "New OS"
    assert len(report["changed_processes"]) == 1
    assert "New OS" in paths.markdown.read_text(encoding="utf-8")


def test_run_diff_files_uses_current_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    f1 = _write(tmp_path / "one.json", _result("", 1000, 2048))
    f2 = _write(tmp_path / "two.json", _result("", 1000, 2048))
    paths = run(Args(diff_targets=[f1, f2]))
    assert paths.html.parent == tmp_path
    text = paths.markdown.read_text(encoding="utf-8")
    assert "本报告对比了 one 和 two 之间的内存使用变化。" in text


def test_main_diff_returns_zero(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    f1 = _write(tmp_path / "a.json", _result("A", 10, 1))
    f2 = _write(tmp_path / "b.json", _result("B", 20, 2))
    assert main(["--diff", str(f1), str(f2)]) == 0
    assert (tmp_path / "diff_report.json").exists()


def test_main_reports_failure():
    assert main(["--pid", "1", "--log-level", "bogus"]) == 1


def test_main_fails_on_corrupt_data(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    bad = tmp_path / "bad.json"
    bad.write_text("not json")
    assert main(["--diff", str(bad), str(bad)]) == 1


def _fake_run(args, *rest, **kwargs):
    out = b""
    if args == ["whoami"]:
        out = b"tester\n"
    elif args[:2] == ["sh", "-c"]:
        command = args[2]
        if "/status" in command:
            out = b"Name:\tinit\nUid:\t0\t0\t0\t0\n"
        elif "readlink" in command:
            out = b"/sbin/init\n"
        elif "stat -c" in command:
            out = b"1234\n"
    return subprocess.CompletedProcess(args, 0, stdout=out, stderr=b"")


def test_handle_single_process_prints_summary(monkeypatch, capsys):
    monkeypatch.setattr("memdiff.local.subprocess.run", _fake_run)
    text = handle_single_process(1)
    printed = capsys.readouterr().out
    assert text in printed
    assert "进程信息 (PID: 1)" in text
    assert "名称: init" in text
    assert '可执行文件: "/sbin/init"' in text
    assert "打开文件数: 0" in text