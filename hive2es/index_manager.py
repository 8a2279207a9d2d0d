"""
Elasticsearch index lifecycle operations.

Every mutating operation returns an AdminResult instead of raising: admin
calls are best-effort, only the bulk load itself decides whether a partition
failed. The caller decides what to do with an ERROR result (the orchestrator
logs it and carries on).
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from elasticsearch import ApiError, Elasticsearch, TransportError

from hive2es.utils import get_logger


class AdminStatus(str, Enum):
    SUCCESS = "success"
    ALREADY_IN_STATE = "already_in_state"
    ERROR = "error"


@dataclass
class AdminResult:
    """Outcome of one administrative call."""

    operation: str
    index: str
    status: AdminStatus
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        """True unless the call failed."""
        return self.status != AdminStatus.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "index": self.index,
            "status": self.status.value,
            "message": self.message,
        }


def create_client(hosts: List[str], request_timeout: int = 60) -> Elasticsearch:
    """
    Create the Elasticsearch client.

    Credentials are taken from the environment when present:
    ELASTICSEARCH_API_KEY, or ELASTICSEARCH_USERNAME + ELASTICSEARCH_PASSWORD.
    """
    kwargs: Dict[str, Any] = {"hosts": hosts, "request_timeout": request_timeout}
    api_key = os.getenv("ELASTICSEARCH_API_KEY")
    username = os.getenv("ELASTICSEARCH_USERNAME")
    if api_key:
        kwargs["api_key"] = api_key
    elif username:
        kwargs["basic_auth"] = (username, os.getenv("ELASTICSEARCH_PASSWORD", ""))
    return Elasticsearch(**kwargs)


def index_settings(shards: int) -> Dict[str, Any]:
    """Settings for a new index tuned for bulk loading."""
    return {
        "index": {
            "number_of_shards": shards,
            "number_of_replicas": 0,
            "refresh_interval": "-1",
        }
    }


def _status(error: ApiError) -> Optional[int]:
    return getattr(error.meta, "status", None)


def _already_exists(error: ApiError) -> bool:
    return _status(error) == 400 and "resource_already_exists_exception" in f"{error.message} {error.body}"


def _not_found(error: ApiError) -> bool:
    return _status(error) == 404


class IndexManager:
    """
    Stateless wrapper over the Elasticsearch indices API.

    Args:
        client: Elasticsearch client
        logger: Logger instance
    """

    def __init__(self, client: Elasticsearch, logger: Optional[logging.Logger] = None):
        self.client = client
        self.logger = logger or get_logger()

    def exists(self, index: str) -> bool:
        """
        Check whether an index exists.

        Raises:
            elasticsearch.ApiError / TransportError: If the cluster can't answer
        """
        return bool(self.client.indices.exists(index=index))

    def exists_or_false(self, index: str) -> bool:
        """Like exists(), but an unreachable cluster counts as 'does not exist'."""
        try:
            return self.exists(index)
        except (ApiError, TransportError) as e:
            self.logger.warning(
                f"failed to check if index '{index}' exists: {e}",
                extra={"event": "admin_error", "metadata": {"operation": "exists", "index": index}},
            )
            return False

    def create(self, index: str, shards: int) -> AdminResult:
        """Create an index with no replicas and refresh disabled."""
        return self._call(
            "create",
            index,
            lambda: self.client.indices.create(index=index, settings=index_settings(shards)),
            already_in_state=_already_exists,
        )

    def delete(self, index: str) -> AdminResult:
        return self._call(
            "delete",
            index,
            lambda: self.client.indices.delete(index=index),
            already_in_state=_not_found,
        )

    def refresh(self, index: str) -> AdminResult:
        """Make newly indexed documents visible to search."""
        return self._call("refresh", index, lambda: self.client.indices.refresh(index=index))

    def alias(self, index: str, alias_name: str) -> AdminResult:
        return self._call(
            "alias",
            index,
            lambda: self.client.indices.put_alias(index=index, name=alias_name),
        )

    def optimize(self, index: str) -> AdminResult:
        """Merge the index down to a single segment."""
        return self._call(
            "optimize",
            index,
            lambda: self.client.indices.forcemerge(index=index, max_num_segments=1),
        )

    def _call(
        self,
        operation: str,
        index: str,
        func: Callable[[], Any],
        already_in_state: Optional[Callable[[ApiError], bool]] = None,
    ) -> AdminResult:
        try:
            func()
        except ApiError as e:
            if already_in_state is not None and already_in_state(e):
                self.logger.debug(f"{operation} '{index}': already in requested state")
                return AdminResult(operation, index, AdminStatus.ALREADY_IN_STATE, str(e))
            return self._error(operation, index, e)
        except TransportError as e:
            return self._error(operation, index, e)
        return AdminResult(operation, index, AdminStatus.SUCCESS)

    def _error(self, operation: str, index: str, error: Exception) -> AdminResult:
        self.logger.warning(
            f"failed to {operation} index '{index}': {error}",
            extra={"event": "admin_error", "metadata": {"operation": operation, "index": index}},
        )
        return AdminResult(operation, index, AdminStatus.ERROR, str(error))
