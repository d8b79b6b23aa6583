"""Process management for long-running kubectl commands."""

import shutil
import subprocess
import tempfile
import time
from types import TracebackType
from typing import IO, Literal

from .exceptions import BinaryNotFoundError, ProcessError
from .logging import get_logger

logger = get_logger(__name__)


def resolve_binary(binary: str) -> str:
    """Resolve a binary name through PATH.

    Raises:
        BinaryNotFoundError: If the binary cannot be found
    """
    resolved = shutil.which(binary)
    if resolved is None:
        raise BinaryNotFoundError(
            f"'{binary}' not found in system PATH. "
            "Install kubectl and ensure it is available in your PATH."
        )
    return resolved


class ProcessManager:
    """Manages a child process lifecycle with context manager support"""

    def __init__(self, args: list[str], stop_timeout: float = 5.0):
        """Initialize ProcessManager with a full command line

        Args:
            args: Command line, first element is the binary
            stop_timeout: Seconds to wait after terminate before killing

        Raises:
            ValueError: If the command line is empty
        """
        if not args:
            raise ValueError("Command line cannot be empty")
        self.args = list(args)
        self.stop_timeout = stop_timeout
        self._process: subprocess.Popen[str] | None = None
        self._stderr_file: IO[str] | None = None
        logger.debug("ProcessManager initialized", binary=self.args[0])

    def start(self) -> bool:
        """Start the process

        Returns:
            True if started successfully

        Raises:
            ProcessError: If process fails to start
        """
        if self.is_running():
            logger.debug("Process already running", pid=self.pid)
            return True

        logger.info("Starting process", command=" ".join(self.args))
        try:
            self._stderr_file = tempfile.TemporaryFile(mode="w+")
            self._process = subprocess.Popen(
                self.args,
                stdout=subprocess.DEVNULL,
                stderr=self._stderr_file,
                text=True,
            )
            logger.info("Process started", pid=self._process.pid)
            return True
        except OSError as e:
            logger.error("Failed to start process", error=str(e))
            raise ProcessError(f"Failed to start process: {e}") from e

    def stop(self) -> bool:
        """Stop the process gracefully, killing it after ``stop_timeout``

        Returns:
            True if stopped successfully, False otherwise
        """
        if self._process is None:
            self._close_stderr()
            return True

        if not self.is_running():
            logger.debug("Process not running, nothing to stop")
            self._process = None
            self._close_stderr()
            return True

        logger.info("Stopping process", pid=self.pid)
        try:
            self._process.terminate()
            try:
                self._process.wait(timeout=self.stop_timeout)
                logger.info("Process terminated gracefully")
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Process did not terminate gracefully, force killing", pid=self.pid
                )
                self._process.kill()
                self._process.wait()

            self._process = None
            return True
        except Exception as e:
            logger.error("Error stopping process", error=str(e))
            self._process = None
            return False
        finally:
            self._close_stderr()

    def is_running(self) -> bool:
        """Check if process is currently running"""
        if self._process is None:
            return False

        return self._process.poll() is None

    @property
    def pid(self) -> int | None:
        """Get process ID if running"""
        if self.is_running() and self._process:
            return self._process.pid
        return None

    @property
    def returncode(self) -> int | None:
        """Exit code once the process has finished"""
        if self._process is None:
            return None
        return self._process.poll()

    def read_stderr(self) -> str:
        """Collect what the process has written to stderr so far"""
        if self._stderr_file is None:
            return ""
        try:
            self._stderr_file.seek(0)
            return self._stderr_file.read().strip()
        except (OSError, ValueError):
            return ""

    def _close_stderr(self) -> None:
        if self._stderr_file is not None:
            self._stderr_file.close()
            self._stderr_file = None

    def wait_for_startup(self, timeout: float = 10.0) -> bool:
        """Wait until the process has survived its first moments"""
        if not self.is_running():
            return False

        start_time = time.monotonic()
        while time.monotonic() - start_time < timeout:
            if not self.is_running():
                return False
            time.sleep(0.1)
            if self.is_running():
                return True

        return False

    def __enter__(self) -> "ProcessManager":
        """Context manager entry - automatically start process

        Raises:
            ProcessError: If process fails to start
        """
        self.start()
        if not self.wait_for_startup():
            raise ProcessError("Process failed to start within timeout")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        """Context manager exit - automatically stop process"""
        try:
            self.stop()
        except Exception as e:
            logger.error("Error during context exit", error=str(e))
        return False
