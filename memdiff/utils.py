"""Helpers for handing output files back to the invoking user."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

_U32_RE = re.compile(r"\+?\d+")


def _parse_u32(text: str | None) -> int | None:
    if text is None or not _U32_RE.fullmatch(text):
        return None
    value = int(text)
    return value if value < 2**32 else None


def get_real_user() -> tuple[int, int]:
    """The (uid, gid) of the real user, honouring SUDO_UID and SUDO_GID."""
    uid = _parse_u32(os.environ.get("SUDO_UID"))
    gid = _parse_u32(os.environ.get("SUDO_GID"))
    if uid is not None and gid is not None:
        return uid, gid
    return os.getuid(), os.getgid()


def fix_file_owner(path: str | os.PathLike[str]) -> None:
    """Give the file at ``path`` to the real user."""
    uid, gid = get_real_user()
    os.chown(path, uid, gid)
    logger.info("已修改文件 %s 的所有者为 UID=%d, GID=%d", Path(path), uid, gid)