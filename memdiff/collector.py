"""Gathering system and per-process memory facts from the running machine."""

from __future__ import annotations

import logging
import os
import re
import shlex
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from memdiff.local import LocalExecutor, SudoError
from memdiff.parsing import (
    classify_file_type,
    find_boot_param,
    format_size,
    library_paths,
    parse_cpu_model,
    parse_fd_listing,
    parse_ipcs_total,
    parse_kernel_config,
    parse_meminfo,
    parse_memory_range,
    parse_modinfo_params,
    parse_os_release,
    parse_ps_output,
    parse_smaps,
    parse_status,
    prioritize_paths,
)
from memdiff.types import (
    CollectionResult,
    LibraryInfo,
    ProcessFile,
    ProcessInfo,
    ProcessMemInfo,
    SystemInfo,
)

logger = logging.getLogger(__name__)

_COMMAND_ERRORS = (OSError, SudoError)
_UINT_RE = re.compile(r"\+?\d+")

_KERNEL_FIND = (
    "find /boot /usr/lib/modules /usr/lib/boot -type f "
    "\\( -name 'vmlinuz*' -o -name 'vmlinux*' -o -name 'kernel*' \\) 2>/dev/null"
)
_INITRD_FIND = (
    "find /boot /usr/lib/modules /usr/lib/boot -type f "
    "\\( -name 'initramfs*' -o -name 'initrd*' -o -name 'booster*' \\) 2>/dev/null"
)


class _Executor(Protocol):
    def execute_command(self, command: str) -> tuple[str, str]: ...

    def execute_sudo_command(self, command: str) -> tuple[str, str]: ...


def _parse_size(text: str) -> int | None:
    text = text.strip()
    return int(text) if _UINT_RE.fullmatch(text) else None


def _debug_path(path: str) -> str:
    escaped = path.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class Collector:
    """Collects a snapshot of system memory use through an executor."""

    def __init__(
        self,
        temp_dir: str | os.PathLike[str],
        max_processes: int | None = None,
        executor: _Executor | None = None,
    ) -> None:
        self.temp_dir = Path(temp_dir)
        self.max_processes = max_processes
        self.executor: _Executor = executor if executor is not None else LocalExecutor()

    def _try_sudo(self, command: str) -> str | None:
        try:
            stdout, _ = self.executor.execute_sudo_command(command)
        except _COMMAND_ERRORS as exc:
            logger.debug("命令执行失败 %s: %s", command, exc)
            return None
        return stdout

    def _stat_size(self, path: str, *, quote: bool = True) -> int | None:
        target = shlex.quote(path) if quote else path
        suffix = " 2>/dev/null" if quote else ""
        output = self._try_sudo(f"stat -c %s {target}{suffix}")
        return None if output is None else _parse_size(output)

    def collect(self) -> CollectionResult:
        """Collect system information and every process."""
        logger.info("开始收集系统信息...")
        self.temp_dir.mkdir(parents=True, exist_ok=True)

        whoami, _ = self.executor.execute_command("whoami")
        username = whoami.strip()
        self.executor.execute_sudo_command(
            f"chown -R {username}:{username} {shlex.quote(str(self.temp_dir))}"
        )
        logger.debug("已将临时目录所有者设置为: %s", username)

        system_info = self.collect_system_info()
        processes, skipped = self.collect_processes()
        system_info.skipped_processes = skipped
        system_info.total_processes = len(processes)
        system_info.processes_memory = sum(p.mem_info.pss for p in processes.values())
        system_info.kernel_memory = max(0, system_info.used_memory - system_info.processes_memory)

        logger.info("系统内存概况:")
        logger.info("- 总物理内存: %s", format_size(system_info.total_memory))
        logger.info("- 已用内存: %s", format_size(system_info.used_memory))
        logger.info(
            "- 剩余内存: %s", format_size(system_info.total_memory - system_info.used_memory)
        )
        logger.info("\n实际进程内存使用:")
        logger.info("- 进程内存总量(PSS): %s", format_size(system_info.processes_memory))
        logger.info("- 内核内存占用: %s", format_size(system_info.kernel_memory))
        logger.info("- 共享内存总量: %s", format_size(system_info.total_shared_memory))

        return CollectionResult(system_info=system_info, processes=processes)

    def _find_kernel_size(self) -> int:
        logger.debug("正在搜索当前正在使用的内核文件...")
        current_path = None
        cmdline = self._try_sudo("cat /proc/cmdline")
        if cmdline is not None:
            logger.debug("内核启动参数: %s", cmdline.strip())
            current_path = find_boot_param(cmdline, ["BOOT_IMAGE="])

        if current_path is None:
            release, _ = self.executor.execute_sudo_command("uname -r")
            release = release.strip()
            logger.debug("当前运行的内核版本: %s", release)
            candidates = [
                f"/boot/vmlinuz-{release}",
                f"/usr/lib/modules/{release}/vmlinuz",
                f"/usr/lib/boot/vmlinuz-{release}",
            ]
            for path in candidates:
                if self._try_sudo(f"test -f {path}") is not None:
                    current_path = path
                    logger.debug("根据内核版本找到内核文件: %s", path)
                    break

        found, _ = self.executor.execute_sudo_command(_KERNEL_FIND)
        paths = prioritize_paths(found.split("\n"), current_path, None)
        logger.debug("发现以下内核文件（按优先级排序）:\n%s", "\n".join(paths))

        for path in paths:
            size = self._stat_size(path, quote=False)
            if size is not None:
                logger.debug("使用内核文件: %s (大小: %s)", path, format_size(size))
                return size
        return 0

    def _find_initrd_size(self, kernel_version: str) -> int:
        logger.debug("正在搜索当前正在使用的initramfs文件...")
        current_path = None
        cmdline = self._try_sudo("cat /proc/cmdline")
        if cmdline is not None:
            value = find_boot_param(cmdline, ["initrd=", "initramfs="])
            if value is not None:
                current_path = value.split("=")[0]

        found, _ = self.executor.execute_sudo_command(_INITRD_FIND)
        paths = prioritize_paths(found.split("\n"), current_path, kernel_version)
        logger.debug("发现以下initramfs文件（按优先级排序）:\n%s", "\n".join(paths))

        for path in paths:
            size = self._stat_size(path, quote=False)
            if size is not None:
                logger.debug("使用initramfs文件: %s (大小: %s)", path, format_size(size))
                return size
        return 0

    def collect_system_info(self) -> SystemInfo:
        """Host, kernel, memory and boot-file facts of the machine."""
        logger.info("收集系统基本信息...")
        run = self.executor.execute_command
        sudo = self.executor.execute_sudo_command

        hostname = run("hostname")[0].strip()
        kernel_version = sudo("uname -r")[0].strip()
        os_release = parse_os_release(run("cat /etc/os-release | grep PRETTY_NAME")[0])
        cpu_info = parse_cpu_model(run("cat /proc/cpuinfo | grep 'model name' | head -1")[0])
        page_size_text = run("getconf PAGE_SIZE")[0].strip()
        meminfo_text = sudo("cat /proc/meminfo")[0]

        kernel_file_size = self._find_kernel_size()
        initrd_file_size = self._find_initrd_size(kernel_version)

        if kernel_file_size == 0:
            logger.debug("警告：未找到任何内核文件")
            build = self._try_sudo("uname -v")
            if build is not None:
                logger.debug("内核构建信息: %s", build.strip())
        if initrd_file_size == 0:
            logger.debug("警告：未找到任何initramfs文件")
            tools = self._try_sudo("which dracut mkinitcpio 2>/dev/null")
            if tools is not None:
                logger.debug("已安装的initramfs工具: %s", tools.strip())

        total_memory, used_memory, meminfo = parse_meminfo(meminfo_text)
        total_shared_memory = self._collect_total_shared_memory()
        kernel_config = self._collect_kernel_config()

        return SystemInfo(
            hostname=hostname,
            kernel_version=kernel_version,
            os_release=os_release,
            cpu_info=cpu_info,
            page_size=int(page_size_text),
            total_memory=total_memory,
            used_memory=used_memory,
            total_shared_memory=total_shared_memory,
            kernel_file_size=kernel_file_size,
            initrd_file_size=initrd_file_size,
            collection_time=datetime.now(timezone.utc),
            meminfo=meminfo,
            kernel_config=kernel_config,
        )

    def _collect_total_shared_memory(self) -> int:
        try:
            output, _ = self.executor.execute_command("ipcs -m")
        except _COMMAND_ERRORS:
            return 0
        return parse_ipcs_total(output)

    def _collect_kernel_config(self) -> dict[str, str]:
        config: dict[str, str] = {}
        if self._try_sudo("test -f /proc/config.gz") is not None:
            output = self._try_sudo("zcat /proc/config.gz")
            if output is not None:
                config.update(parse_kernel_config(output))

        if not config:
            release = self._try_sudo("uname -r")
            if release is not None:
                output = self._try_sudo(f"cat /boot/config-{release.strip()}")
                if output is not None:
                    config.update(parse_kernel_config(output))

        if not config:
            modules = self._try_sudo("lsmod | tail -n +2 | awk '{print $1}'")
            if modules is not None:
                for module in modules.splitlines():
                    info = self._try_sudo(f"modinfo {module.strip()}")
                    if info is not None:
                        config.update(parse_modinfo_params(module, info))
        return config

    def collect_processes(self) -> tuple[dict[int, ProcessInfo], int]:
        """Collect every listed process; returns the processes and the skipped count."""
        logger.info("收集进程信息...")
        ps_output, _ = self.executor.execute_command("ps -e -o pid=,rss=,comm= --sort=-rss")
        listed = parse_ps_output(ps_output)
        total_count = len(listed)
        logger.info("共发现 %d 个进程", total_count)

        if self.max_processes is not None:
            logger.info("采集进程数量已限制为 %d", self.max_processes)
            listed = listed[: self.max_processes]

        processes: dict[int, ProcessInfo] = {}
        for done, (pid, _name) in enumerate(listed, start=1):
            try:
                processes[pid] = self.collect_process_info(pid)
                logger.debug("成功收集进程信息 PID: %d", pid)
            except _COMMAND_ERRORS as exc:
                logger.debug("收集进程 %d 信息失败: %s", pid, exc)
            if done % 10 == 0 or done == total_count:
                percent = done / total_count * 100.0
                print(f"\r进度: {done}/{total_count}  ({percent:.1f}%)    ", end="", flush=True)

        skipped = 0
        logger.info("共跳过 %d 个系统进程", skipped)
        return processes, skipped

    def collect_process_info(self, pid: int) -> ProcessInfo:
        """Everything that can be learned about one process."""
        logger.debug("收集进程信息 PID: %d", pid)
        sudo = self.executor.execute_sudo_command

        status_text, _ = sudo(f"cat /proc/{pid}/status 2>/dev/null")
        status = parse_status(status_text, os.geteuid())

        exe_text, _ = sudo(f"readlink -f /proc/{pid}/exe 2>/dev/null")
        exe_path = exe_text.strip()
        if not exe_path:
            logger.debug("进程 %d 可能运行在独立namespace中，无法获取可执行文件路径", pid)
            exe_size = 0
        else:
            exe_size = self._stat_size(exe_path) or 0

        return ProcessInfo(
            pid=pid,
            name=status.name,
            exe_path=exe_path,
            exe_size=exe_size,
            is_kthread=status.is_kthread,
            mem_info=self._collect_memory_info(pid),
            shared_memory=self._collect_shared_memory(pid),
            open_files=self._collect_open_files(pid),
            libraries=self._collect_libraries(pid),
            user_id=status.user_id,
        )

    def _collect_memory_info(self, pid: int) -> ProcessMemInfo:
        smaps = self._try_sudo(f"cat /proc/{pid}/smaps 2>/dev/null")
        return ProcessMemInfo() if smaps is None else parse_smaps(smaps)

    def _collect_libraries(self, pid: int) -> list[LibraryInfo]:
        maps = self._try_sudo(f"cat /proc/{pid}/maps 2>/dev/null")
        if maps is None:
            return []
        return [
            LibraryInfo(path=path, size=self._stat_size(path) or 0, loaded_size=0)
            for path in library_paths(maps)
        ]

    def _collect_open_files(self, pid: int) -> list[ProcessFile]:
        listing = self._try_sudo(f"ls -l /proc/{pid}/fd/ 2>/dev/null")
        if listing is None:
            return []
        return [
            ProcessFile(
                path=path,
                size=self._stat_size(path) or 0,
                access_mode=mode,
                file_type=classify_file_type(path),
            )
            for mode, path in parse_fd_listing(listing)
        ]

    def _collect_shared_memory(self, pid: int) -> int:
        shm = self._try_sudo(f"cat /proc/{pid}/maps | grep -i shm")
        if shm is None:
            return 0
        sizes = (parse_memory_range(line) for line in shm.splitlines())
        return sum(size for size in sizes if size is not None)

    def collect_single_process(self, pid: int) -> str:
        """A printable summary of one process."""
        try:
            info = self.collect_process_info(pid)
        except _COMMAND_ERRORS as exc:
            raise RuntimeError(f"无法获取进程 {pid} 的信息: {exc}") from exc

        lines = [
            f"进程信息 (PID: {pid})",
            f"名称: {info.name}",
            f"可执行文件: {_debug_path(info.exe_path)}",
            f"可执行文件大小: {format_size(info.exe_size)}",
            f"PSS: {format_size(info.mem_info.pss)}",
            f"RSS: {format_size(info.mem_info.rss)}",
            f"共享内存: {format_size(info.shared_memory)}",
            f"打开文件数: {len(info.open_files)}",
            "",
            "动态库信息:",
        ]
        lines.extend(
            f"- {_debug_path(lib.path)} ({format_size(lib.size)})" for lib in info.libraries
        )
        return "\n".join(lines) + "\n"