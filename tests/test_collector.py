import shlex

import pytest

from memdiff.collector import Collector
from memdiff.parsing import (
    MeminfoError,
    format_size,
    parse_ipcs_total,
    parse_meminfo,
    parse_memory_range,
    parse_smaps,
)

KERNEL_FIND = (
    "find /boot /usr/lib/modules /usr/lib/boot -type f "
    "\\( -name 'vmlinuz*' -o -name 'vmlinux*' -o -name 'kernel*' \\) 2>/dev/null"
)
INITRD_FIND = (
    "find /boot /usr/lib/modules /usr/lib/boot -type f "
    "\\( -name 'initramfs*' -o -name 'initrd*' -o -name 'booster*' \\) 2>/dev/null"
)

SMAPS = (
    "00400000-00452000 r-xp 00000000 08:02 173521 /usr/bin/foo\n"
    "Size:                328 kB\n"
    "Rss:                 100 kB\n"
    "Pss:                  50 kB\n"
    "00651000-00652000 rw-p 00051000 08:02 173521 /usr/bin/foo\n"
    "Size:                  4 kB\n"
    "Rss:                   4 kB\n"
    "Pss:                   4 kB\n"
)
SHM_LINE = "7f0000000000-7f0000001000 rw-s 00000000 00:05 1 /SYSV00000000 (deleted) shm"
FD_LISTING = (
    "total 0\n"
    "lrwx------ 1 root root 64 Jan  1 00:00 3 -> socket:[123]\n"
    "lr-x------ 1 root root 64 Jan  1 00:00 4 -> /var/log/app.log\n"
)
MAPS = (
    "7f00-7f10 r-xp 00000000 08:02 1 /usr/lib/libc.so.6\n"
    "7f10-7f20 r--p 00000000 08:02 1 /usr/lib/libc.so.6\n"
    "7f20-7f30 r-xp 00000000 08:02 2 /usr/lib/libm.so.6\n"
    "7f30-7f40 rw-p 00000000 00:00 0 [heap]\n"
)
MEMINFO = "MemTotal:       1000 kB\nMemAvailable:    400 kB\nCached:   20 kB\n"


class FakeExecutor:
    def __init__(self, responses=None, sizes=None, failing=()):
        self.responses = dict(responses or {})
        self.sizes = dict(sizes or {})
        self.failing = set(failing)
        self.calls = []

    def _run(self, command):
        self.calls.append(command)
        if command in self.failing:
            raise OSError(f"cannot run {command}")
        prefix = "stat -c %s "
        if command.startswith(prefix):
            arg = command[len(prefix):].replace(" 2>/dev/null", "")
            path = shlex.split(arg)[0]
            return self.sizes.get(path, ""), ""
        return self.responses.get(command, ""), ""

    def execute_command(self, command):
        return self._run(command)

    def execute_sudo_command(self, command):
        return self._run(command)


def process_responses(pid, name="foo", uid="1000", exe="/usr/bin/foo", kthread="0"):
    return {
        f"cat /proc/{pid}/status 2>/dev/null": (
            f"Name:\t{name}\nUid:\t{uid}\t{uid}\t{uid}\t{uid}\nKthread:\t{kthread}\n"
        ),
        f"readlink -f /proc/{pid}/exe 2>/dev/null": exe + "\n",
        f"cat /proc/{pid}/smaps 2>/dev/null": SMAPS,
        f"cat /proc/{pid}/maps 2>/dev/null": MAPS,
        f"ls -l /proc/{pid}/fd/ 2>/dev/null": FD_LISTING,
        f"cat /proc/{pid}/maps | grep -i shm": SHM_LINE + "\n",
    }


def system_responses(**overrides):
    responses = {
        "hostname": "box\n",
        "uname -r": "6.1.0\n",
        "cat /etc/os-release | grep PRETTY_NAME": 'PRETTY_NAME="Example Linux 1"\n',
        "cat /proc/cpuinfo | grep 'model name' | head -1": "model name\t: Example CPU\n",
        "getconf PAGE_SIZE": "4096\n",
        "cat /proc/meminfo": MEMINFO,
        "cat /proc/cmdline": "BOOT_IMAGE=/vmlinuz-6.1.0 root=/dev/sda1 quiet\n",
        KERNEL_FIND: "/boot/vmlinuz-5.0\n/boot/vmlinuz-6.1.0\n",
        INITRD_FIND: "/boot/initrd-5.0\n/boot/initrd-6.1.0\n",
        "ipcs -m": (
            "\n------ Shared Memory Segments --------\n"
            "key        shmid      owner      perms      bytes      nattch     status\n"
            "0x00000000 1          root       600        2048       2\n"
            "0x00000000 2          root       600        1024       2\n"
        ),
        "test -f /proc/config.gz": "",
        "zcat /proc/config.gz": "# comment\nCONFIG_A=y\nCONFIG_B = m\n",
    }
    responses.update(overrides)
    return responses


def system_sizes():
    return {
        "/boot/vmlinuz-5.0": "111",
        "/boot/vmlinuz-6.1.0": "12345",
        "/boot/initrd-5.0": "222",
        "/boot/initrd-6.1.0": "67890",
    }


def test_collect_process_info_reads_all_sources():
    sizes = {"/usr/bin/foo": "5000", "/usr/lib/libc.so.6": "700", "/usr/lib/libm.so.6": "300",
             "/var/log/app.log": "42"}
    executor = FakeExecutor(process_responses(7), sizes)
    info = Collector("/tmp/x", None, executor).collect_process_info(7)

    assert info.pid == 7
    assert info.name == "foo"
    assert info.user_id == 1000
    assert info.is_kthread is False
    assert info.exe_path == "/usr/bin/foo"
    assert info.exe_size == 5000
    assert info.mem_info == parse_smaps(SMAPS)
    assert [(lib.path, lib.size) for lib in info.libraries] == [
        ("/usr/lib/libc.so.6", 700),
        ("/usr/lib/libm.so.6", 300),
    ]
    assert [(f.path, f.size, f.file_type, f.access_mode) for f in info.open_files] == [
        ("socket:[123]", 0, "socket", "lrwx------"),
        ("/var/log/app.log", 42, "regular", "lr-x------"),
    ]
    assert info.shared_memory == parse_memory_range(SHM_LINE)


def test_collect_process_info_empty_exe_has_zero_size():
    responses = process_responses(8, exe="")
    executor = FakeExecutor(responses, {"": "999"})
    info = Collector("/tmp/x", None, executor).collect_process_info(8)
    assert info.exe_path == ""
    assert info.exe_size == 0
    assert not any(c.startswith("stat -c %s ''") for c in executor.calls)


def test_collect_process_info_tolerates_failing_optional_sources():
    responses = process_responses(9)
    failing = {
        "cat /proc/9/smaps 2>/dev/null",
        "cat /proc/9/maps 2>/dev/null",
        "ls -l /proc/9/fd/ 2>/dev/null",
        "cat /proc/9/maps | grep -i shm",
    }
    executor = FakeExecutor(responses, {"/usr/bin/foo": "10"}, failing)
    info = Collector("/tmp/x", None, executor).collect_process_info(9)
    assert info.mem_info.pss == 0
    assert info.libraries == []
    assert info.open_files == []
    assert info.shared_memory == 0
    assert info.exe_size == 10


def test_collect_process_info_status_failure_raises():
    executor = FakeExecutor(process_responses(3), failing={"cat /proc/3/status 2>/dev/null"})
    with pytest.raises(OSError):
        Collector("/tmp/x", None, executor).collect_process_info(3)


def test_collect_processes_skips_failures(capsys):
    responses = {"ps -e -o pid=,rss=,comm= --sort=-rss": "  1 100 init\n  2  50 bash\n"}
    responses.update(process_responses(1, name="init"))
    responses.update(process_responses(2, name="bash"))
    executor = FakeExecutor(responses, failing={"cat /proc/2/status 2>/dev/null"})
    processes, skipped = Collector("/tmp/x", None, executor).collect_processes()
    assert sorted(processes) == [1]
    assert processes[1].name == "init"
    assert skipped == 0
    assert "进度: 2/2" in capsys.readouterr().out


def test_collect_processes_respects_limit():
    responses = {"ps -e -o pid=,rss=,comm= --sort=-rss": "  5 900 big\n  6 10 small\n"}
    responses.update(process_responses(5, name="big"))
    responses.update(process_responses(6, name="small"))
    executor = FakeExecutor(responses)
    processes, _ = Collector("/tmp/x", 1, executor).collect_processes()
    assert list(processes) == [5]
    assert "cat /proc/6/status 2>/dev/null" not in executor.calls


def test_kernel_config_falls_back_to_boot_file():
    responses = system_responses(**{
        "zcat /proc/config.gz": "",
        "cat /boot/config-6.1.0": "CONFIG_X=1\n",
    })
    executor = FakeExecutor(responses, system_sizes())
    info = Collector("/tmp/x", None, executor).collect_system_info()
    assert info.kernel_config == {"CONFIG_X": "1"}


def test_kernel_found_from_release_when_cmdline_lacks_image():
    responses = system_responses(**{
        "cat /proc/cmdline": "root=/dev/sda1\n",
        KERNEL_FIND: "/boot/vmlinuz-5.0\n",
    })
    sizes = system_sizes()
    sizes["/boot/vmlinuz-6.1.0"] = "12345"
    executor = FakeExecutor(responses, sizes)
    info = Collector("/tmp/x", None, executor).collect_system_info()
    assert "test -f /boot/vmlinuz-6.1.0" in executor.calls
    assert info.kernel_file_size == 12345
    assert info.initrd_file_size == 67890


def test_missing_meminfo_total_raises():
    responses = system_responses(**{"cat /proc/meminfo": "MemFree: 10 kB\n"})
    executor = FakeExecutor(responses, system_sizes())
    with pytest.raises(MeminfoError):
        Collector("/tmp/x", None, executor).collect_system_info()


def test_collect_combines_system_and_processes(tmp_path):
    responses = system_responses()
    responses["whoami"] = "tester\n"
    responses["ps -e -o pid=,rss=,comm= --sort=-rss"] = "  1 100 init\n  2 50 bash\n"
    responses.update(process_responses(1, name="init"))
    responses.update(process_responses(2, name="bash"))
    executor = FakeExecutor(responses, system_sizes())
    temp_dir = tmp_path / "work" / "nested"

    result = Collector(temp_dir, None, executor).collect()

    assert temp_dir.is_dir()
    assert any(c.startswith("chown -R tester:tester ") for c in executor.calls)
    info = result.system_info
    assert sorted(result.processes) == [1, 2]
    assert info.total_processes == len(result.processes)
    assert info.processes_memory == sum(p.mem_info.pss for p in result.processes.values())
    assert info.kernel_memory == max(0, info.used_memory - info.processes_memory)
    assert info.skipped_processes == 0


def test_collect_single_process_output():
    sizes = {"/usr/bin/foo": "5000", "/usr/lib/libc.so.6": "700", "/usr/lib/libm.so.6": "300"}
    executor = FakeExecutor(process_responses(42), sizes)
    text = Collector("/tmp/x", None, executor).collect_single_process(42)
    lines = text.splitlines()
    assert lines[0] == "进程信息 (PID: 42)"
    assert "名称: foo" in lines
    assert 'Executable' not in text
    assert f'可执行文件: "/usr/bin/foo"' in lines
    assert f"可执行文件大小: {format_size(5000)}" in lines
    assert f'- "/usr/lib/libc.so.6" ({format_size(700)})' in lines
    assert "打开文件数: 2" in lines


def test_collect_single_process_failure():
    executor = FakeExecutor(failing={"cat /proc/5/status 2>/dev/null"})
    with pytest.raises(RuntimeError, match="无法获取进程 5 的信息"):
        Collector("/tmp/x", None, executor).collect_single_process(5)