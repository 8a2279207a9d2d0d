"""Base class for external tool adapters."""

import logging
import shlex
import shutil
import signal
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from hive2es.utils import get_logger


# shell convention for a child terminated by Control-C
INTERRUPT_EXIT_CODE = 128 + signal.SIGINT


def is_interrupt_exit(returncode: Optional[int]) -> bool:
    """
    Check whether a process exit status means the user hit Control-C.

    Covers both a child that handled SIGINT and exited 130, and a child killed
    by the signal (negative return code from subprocess).
    """
    return returncode in (INTERRUPT_EXIT_CODE, -signal.SIGINT)


class ToolAdapter(ABC):
    """
    Adapter for an external command line tool.

    The command is given as a shell-style string (e.g. 'hive --hiveconf k=v')
    and split into an argv list, so no shell is involved when executing it.
    """

    def __init__(self, command: str, logger: Optional[logging.Logger] = None):
        self.command = command
        self.argv: List[str] = shlex.split(command)
        if not self.argv:
            raise ValueError("tool command must not be empty")
        self.logger = logger or get_logger()

    @property
    def executable(self) -> str:
        return self.argv[0]

    def is_available(self) -> bool:
        """Check the tool executable can be found on PATH."""
        return shutil.which(self.executable) is not None

    def build_command(self, *args: str) -> List[str]:
        return self.argv + list(args)

    def execute(self, *args: str, **kwargs: Any) -> subprocess.CompletedProcess:
        """
        Execute the tool with extra arguments.

        Args:
            *args: Command arguments appended to the base command
            **kwargs: Additional arguments passed to subprocess.run

        Returns:
            subprocess.CompletedProcess result
        """
        cmd = self.build_command(*args)
        self.logger.debug(f"Executing: {shlex.join(cmd)}")
        return subprocess.run(cmd, **kwargs)

    @abstractmethod
    def validate(self) -> Dict[str, Any]:
        """
        Validate the tool can be used.

        Returns:
            Dictionary with keys:
                - 'valid': bool indicating if validation passed
                - 'errors': list of error messages
                - 'warnings': list of warning messages
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(command={self.command!r})"
