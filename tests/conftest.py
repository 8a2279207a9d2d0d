"""Shared fixtures: a scripted Hive fake, a mocked index manager and run configs."""

from unittest.mock import MagicMock

import pytest

from hive2es.config import IndexingConfig
from hive2es.index_manager import AdminResult, AdminStatus, IndexManager
from hive2es.query_builder import JarPaths
from hive2es.schema import ColumnDefinition
from hive2es.utils import Cooldown


SALES_COLUMNS = [
    ColumnDefinition("id", "int"),
    ColumnDefinition("amount", "double"),
    ColumnDefinition("customer", "string"),
    ColumnDefinition("dt", "string"),
]


class FakeHive:
    """
    In-memory stand-in for HiveAdapter.

    exit_codes maps a job name to the exit code (or exception) its job returns,
    every other job exits 0.
    """

    def __init__(self, columns=None, partitions=None, exit_codes=None):
        self.columns = list(SALES_COLUMNS if columns is None else columns)
        self.partitions = list(partitions or [])
        self.exit_codes = dict(exit_codes or {})
        self.describe_calls = []
        self.jobs = []

    def describe_columns(self, db, relation):
        self.describe_calls.append(f"{db}.{relation}")
        return list(self.columns)

    def list_partitions(self, db, table):
        return list(self.partitions)

    def run_job(self, hql, job_name, verbose=1):
        self.jobs.append((job_name, hql))
        outcome = self.exit_codes.get(job_name, 0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def job_names(self):
        return [name for name, _ in self.jobs]


def _admin(operation):
    def call(index, *args):
        return AdminResult(operation, index, AdminStatus.SUCCESS)
    return call


@pytest.fixture
def fake_hive():
    return FakeHive()


@pytest.fixture
def index_manager():
    """IndexManager mock: no index exists and every admin call succeeds."""
    manager = MagicMock(spec=IndexManager)
    manager.exists.return_value = False
    manager.exists_or_false.return_value = False
    for operation in ("create", "delete", "refresh", "alias", "optimize"):
        getattr(manager, operation).side_effect = _admin(operation)
    return manager


@pytest.fixture
def cooldown():
    mock = MagicMock(spec=Cooldown)
    mock.wait.return_value = False
    return mock


@pytest.fixture
def jars():
    return JarPaths(
        elasticsearch_hadoop="/opt/jars/elasticsearch-hadoop-hive-7.17.0.jar",
        commons_httpclient="/opt/jars/commons-httpclient-3.1.jar",
    )


@pytest.fixture
def make_config():
    """Factory for IndexingConfig with test defaults."""

    def factory(**overrides):
        values = {"table": "sales", "index": "sales", "assume_yes": True}
        values.update(overrides)
        return IndexingConfig(**values)

    return factory
