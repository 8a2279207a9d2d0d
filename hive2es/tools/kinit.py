"""Kerberos ticket renewal adapter."""

import logging
from typing import Any, Dict, Optional

from hive2es.config import DEFAULT_KINIT_COMMAND
from hive2es.tools.base import ToolAdapter


class KerberosAdapter(ToolAdapter):
    """
    Renews an existing renewable Kerberos TGT with 'kinit -R'.

    The ticket must be created before the run. Renewal is best-effort: the
    cluster may not be kerberized at all, and a real authentication problem
    will show up as a failed Hive job anyway.
    """

    def __init__(self, command: str = DEFAULT_KINIT_COMMAND, logger: Optional[logging.Logger] = None):
        super().__init__(command, logger)

    def validate(self) -> Dict[str, Any]:
        warnings = []
        if not self.is_available():
            warnings.append(f"'{self.executable}' not found in PATH, Kerberos renewal disabled")
        return {"valid": True, "errors": [], "warnings": warnings}

    def renew(self) -> bool:
        """
        Renew the ticket.

        Returns:
            True if kinit ran and succeeded, False otherwise (never raises)
        """
        if not self.is_available():
            self.logger.debug(
                f"{self.executable} not found, skipping Kerberos ticket renewal",
                extra={"event": "kinit_skipped"},
            )
            return False

        try:
            result = self.execute("-R", capture_output=True, text=True, check=False)
        except OSError as e:
            self.logger.warning(
                f"Kerberos ticket renewal failed: {e}",
                extra={"event": "kinit_failed"},
            )
            return False

        output = "\n".join(filter(None, [result.stdout.strip(), result.stderr.strip()]))
        if output:
            self.logger.debug(output)

        if result.returncode != 0:
            self.logger.warning(
                f"Kerberos ticket renewal failed with exit code {result.returncode}",
                extra={"event": "kinit_failed", "metadata": {"exit_code": result.returncode}},
            )
            return False

        self.logger.debug("Kerberos ticket renewed", extra={"event": "kinit_renewed"})
        return True
