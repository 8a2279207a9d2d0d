"""Hive CLI adapter: metadata discovery and batch job execution."""

import logging
import subprocess
from typing import Any, Dict, List, Optional, Protocol

from hive2es.config import DEFAULT_HIVE_COMMAND
from hive2es.errors import DiscoveryError, InterruptedRun
from hive2es.schema import ColumnDefinition, parse_describe_output
from hive2es.tools.base import ToolAdapter, is_interrupt_exit


# exit code reported when the job outlives job_timeout_seconds, as timeout(1) does
TIMEOUT_EXIT_CODE = 124


class MetadataProvider(Protocol):
    """Source of table metadata used by schema and partition discovery."""

    def describe_columns(self, db: str, relation: str) -> List[ColumnDefinition]:
        ...

    def list_partitions(self, db: str, table: str) -> List[str]:
        ...


class HiveAdapter(ToolAdapter):
    """
    Adapter for the Hive CLI.

    Discovery statements run silently ('-S -e') with stdout captured and
    stderr discarded. Indexing jobs inherit the terminal so Hive's progress
    output is visible, and may run for days.
    """

    def __init__(
        self,
        command: str = DEFAULT_HIVE_COMMAND,
        job_timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(command, logger)
        self.job_timeout = job_timeout

    def validate(self) -> Dict[str, Any]:
        errors = []
        if not self.is_available():
            errors.append(f"'{self.executable}' not found in PATH")
        return {"valid": len(errors) == 0, "errors": errors, "warnings": []}

    def run_statement(self, statement: str) -> subprocess.CompletedProcess:
        """
        Run a single metadata statement silently and capture its output.

        Raises:
            InterruptedRun: If the user hit Control-C during the statement
        """
        result = self.execute(
            "-S",
            "-e",
            statement,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            check=False,
        )
        if is_interrupt_exit(result.returncode):
            raise InterruptedRun("Control-C detected, exiting without attempting further indices")
        return result

    def describe_columns(self, db: str, relation: str) -> List[ColumnDefinition]:
        """Describe a table or view. An empty list means nothing could be parsed."""
        result = self.run_statement(f"describe {db}.{relation}")
        return parse_describe_output((result.stdout or "").splitlines())

    def list_partitions(self, db: str, table: str) -> List[str]:
        """
        List partition descriptors of a table.

        Raises:
            DiscoveryError: If 'show partitions' fails
        """
        result = self.run_statement(f"show partitions {db}.{table}")
        if result.returncode != 0:
            raise DiscoveryError(
                f"Failed to determine partitions for table '{db}.{table}', did you specify "
                "a non-existent table or perhaps a view for --table?"
            )
        return [line for line in (result.stdout or "").splitlines() if line.strip()]

    def run_job(self, hql: str, job_name: str, verbose: int = 1) -> int:
        """
        Run an indexing job and block until Hive exits.

        Args:
            hql: Generated HQL script
            job_name: Hive session id for the job
            verbose: Verbosity level, above 1 passes '-v' to Hive

        Returns:
            Hive exit code

        Raises:
            KeyboardInterrupt: If the user hit Control-C in this process
        """
        args = []
        if verbose > 1:
            args.append("-v")
        args.extend(["--hiveconf", f"hive.session.id={job_name}", "-e", hql])

        try:
            result = self.execute(*args, check=False, timeout=self.job_timeout)
        except subprocess.TimeoutExpired:
            self.logger.error(
                f"Hive job '{job_name}' exceeded the timeout of {self.job_timeout} secs",
                extra={"event": "job_timeout"},
            )
            return TIMEOUT_EXIT_CODE
        return result.returncode
