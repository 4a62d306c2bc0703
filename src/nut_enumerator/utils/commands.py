"""External command execution for service-manager backends.

Every backend talks to its service manager through a CommandRunner so that
the process-invocation mechanics can be swapped out (tests inject a fake).
Commands run without a shell, exactly once, and are never retried.
"""
import logging
import subprocess
from typing import Optional

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """A service-manager command failed or could not be started."""

    def __init__(self, args: list[str], returncode: Optional[int], stderr: str = ""):
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit status {returncode}"
        super().__init__(f"Command '{' '.join(self.command)}' failed: {detail}")


class CommandResult:
    """Result of a command execution."""

    def __init__(
        self,
        args: list[str],
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
    ):
        self.args = list(args)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def lines(self) -> list[str]:
        """Non-empty stdout lines, stripped."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]

    def to_dict(self) -> dict:
        return {
            "args": self.args,
            "returncode": self.returncode,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }

    def __repr__(self) -> str:
        status = "OK" if self.success else f"FAILED({self.returncode})"
        return f"CommandResult({status}, command={' '.join(self.args)!r})"


class CommandRunner:
    """Runs service-manager commands as blocking subprocesses."""

    def __init__(self, timeout: Optional[float] = 120):
        self.timeout = timeout

    def run(self, *args: str, check: bool = True) -> CommandResult:
        """Run a command and capture its output.

        Args:
            *args: Program and arguments
            check: Raise CommandError on a non-zero exit status

        Returns:
            CommandResult with exit status and captured output

        Raises:
            CommandError: If the program cannot be started, times out, or
                exits non-zero while check is set
        """
        cmd = list(args)
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise CommandError(cmd, None, str(e)) from e

        result = CommandResult(cmd, proc.returncode, proc.stdout or "", proc.stderr or "")

        if check and not result.success:
            logger.debug(f"Command failed ({result.returncode}): {result.stderr.strip()}")
            raise CommandError(cmd, result.returncode, result.stderr)

        return result
