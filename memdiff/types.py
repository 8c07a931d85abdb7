"""Data records produced by a collection run and stored as JSON."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any

_TIMESTAMP_RE = re.compile(r"^(?P<base>[^.]+?)(?:\.(?P<frac>\d+))?(?P<tz>Z|z|[+-]\d{2}:\d{2})?$")


def _format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = moment.astimezone(timezone.utc).isoformat()
    return text.replace("+00:00", "Z")


def _parse_timestamp(text: str) -> datetime:
    match = _TIMESTAMP_RE.match(text.strip())
    if match is None:
        raise ValueError(f"invalid timestamp: {text!r}")
    base = match.group("base")
    frac = match.group("frac")
    tz = match.group("tz") or "+00:00"
    if tz in ("Z", "z"):
        tz = "+00:00"
    if frac:
        base = f"{base}.{frac[:6].ljust(6, '0')}"
    moment = datetime.fromisoformat(base + tz)
    return moment.astimezone(timezone.utc)


@dataclass
class ProcessMemInfo:
    """Memory figures of one process, in bytes."""

    pss: int = 0
    rss: int = 0
    private: int = 0
    shared: int = 0
    swap: int = 0
    cache: int = 0
    text_size: int = 0
    data_size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProcessMemInfo:
        return cls(**{f.name: int(data[f.name]) for f in fields(cls)})


@dataclass
class ProcessFile:
    """A file descriptor held open by a process."""

    path: str
    size: int
    access_mode: str
    file_type: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProcessFile:
        return cls(
            path=str(data["path"]),
            size=int(data["size"]),
            access_mode=str(data["access_mode"]),
            file_type=str(data["file_type"]),
        )


@dataclass
class LibraryInfo:
    """A shared library mapped into a process."""

    path: str
    size: int
    loaded_size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LibraryInfo:
        return cls(
            path=str(data["path"]),
            size=int(data["size"]),
            loaded_size=int(data["loaded_size"]),
        )


@dataclass
class ProcessInfo:
    """Everything collected about one process."""

    pid: int
    name: str
    exe_path: str = ""
    exe_size: int = 0
    is_kthread: bool = False
    mem_info: ProcessMemInfo = field(default_factory=ProcessMemInfo)
    shared_memory: int = 0
    open_files: list[ProcessFile] = field(default_factory=list)
    libraries: list[LibraryInfo] = field(default_factory=list)
    user_id: int = 0

    def hash_key(self) -> tuple[int, str]:
        """Identity of the process: name for kernel threads, else executable path."""
        if self.is_kthread or self.exe_size == 0:
            return self.pid, self.name
        return self.pid, self.exe_path

    def hash_key_string(self) -> str:
        pid, name = self.hash_key()
        return f"{pid}:{name}"

    def effective_memory(self) -> int:
        """PSS when known, otherwise RSS."""
        return self.mem_info.pss if self.mem_info.pss > 0 else self.mem_info.rss

    def to_dict(self) -> dict[str, Any]:
        return {
            "pid": self.pid,
            "name": self.name,
            "exe_path": self.exe_path,
            "exe_size": self.exe_size,
            "is_kthread": self.is_kthread,
            "mem_info": self.mem_info.to_dict(),
            "shared_memory": self.shared_memory,
            "open_files": [f.to_dict() for f in self.open_files],
            "libraries": [lib.to_dict() for lib in self.libraries],
            "user_id": self.user_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProcessInfo:
        return cls(
            pid=int(data["pid"]),
            name=str(data["name"]),
            exe_path=str(data["exe_path"]),
            exe_size=int(data["exe_size"]),
            is_kthread=bool(data["is_kthread"]),
            mem_info=ProcessMemInfo.from_dict(data["mem_info"]),
            shared_memory=int(data["shared_memory"]),
            open_files=[ProcessFile.from_dict(f) for f in data["open_files"]],
            libraries=[LibraryInfo.from_dict(lib) for lib in data["libraries"]],
            user_id=int(data["user_id"]),
        )


def is_kernel_process(process: ProcessInfo) -> bool:
    """A kernel thread, or a process whose executable could not be sized."""
    return process.is_kthread or process.exe_size == 0


@dataclass
class SystemInfo:
    """System-wide facts gathered during a collection run."""

    hostname: str = ""
    kernel_version: str = ""
    os_release: str = ""
    cpu_info: str = ""
    page_size: int = 0
    total_memory: int = 0
    used_memory: int = 0
    total_shared_memory: int = 0
    kernel_memory: int = 0
    processes_memory: int = 0
    kernel_file_size: int = 0
    initrd_file_size: int = 0
    skipped_processes: int = 0
    total_processes: int = 0
    collection_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    meminfo: dict[str, int] = field(default_factory=dict)
    kernel_config: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["collection_time"] = _format_timestamp(self.collection_time)
        data["meminfo"] = dict(self.meminfo)
        data["kernel_config"] = dict(self.kernel_config)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SystemInfo:
        int_fields = (
            "page_size",
            "total_memory",
            "used_memory",
            "total_shared_memory",
            "kernel_memory",
            "processes_memory",
            "kernel_file_size",
            "initrd_file_size",
            "skipped_processes",
            "total_processes",
        )
        str_fields = ("hostname", "kernel_version", "os_release", "cpu_info")
        kwargs: dict[str, Any] = {name: int(data[name]) for name in int_fields}
        kwargs.update({name: str(data[name]) for name in str_fields})
        kwargs["collection_time"] = _parse_timestamp(str(data["collection_time"]))
        kwargs["meminfo"] = {str(k): int(v) for k, v in data["meminfo"].items()}
        kwargs["kernel_config"] = {str(k): str(v) for k, v in data["kernel_config"].items()}
        return cls(**kwargs)


@dataclass
class CollectionResult:
    """The output of one collection run."""

    system_info: SystemInfo
    processes: dict[int, ProcessInfo] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "system_info": self.system_info.to_dict(),
            "processes": {str(pid): proc.to_dict() for pid, proc in self.processes.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CollectionResult:
        return cls(
            system_info=SystemInfo.from_dict(data["system_info"]),
            processes={int(pid): ProcessInfo.from_dict(proc) for pid, proc in data["processes"].items()},
        )