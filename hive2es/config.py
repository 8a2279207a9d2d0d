"""
Configuration management for hive2es.

Two layers:
- Settings: site settings loaded from config.yaml (hive/kinit commands, jar
  locations, cooldown, logging). Missing file means defaults.
- IndexingConfig: immutable per-run job options, validated once from CLI input
  and passed by reference to every component.
"""

import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml
from dotenv import load_dotenv

from hive2es.errors import ConfigError


DEFAULT_HIVE_COMMAND = "hive --hiveconf hive.execution.engine=mr"
DEFAULT_KINIT_COMMAND = "kinit"
DEFAULT_JAR_SEARCH_PATHS = [
    ".",
    "~",
    "/usr/hdp/current/hadoop-client/lib",
    "/opt/cloudera/parcels/CDH/lib",
    "/opt/cloudera/parcels/CDH/hadoop/lib",
    "/usr/lib/hadoop*/lib",
]
DEFAULT_FAILURE_COOLDOWN_SECONDS = 600
# bulk indexing billions of documents can take days
DEFAULT_JOB_TIMEOUT_SECONDS = 86400 * 3
MAX_JOB_TIMEOUT_SECONDS = 86400 * 7

DEFAULT_NODES = "localhost:9200"
DEFAULT_PORT = 9200
DEFAULT_DATABASE = "default"
DEFAULT_QUEUE = "default"
DEFAULT_SHARDS = 5
MAX_SHARDS = 1000

# evaluated inside regex brackets [ ]
VALID_PARTITION_KEY_CHARS = "A-Za-z0-9_-"
VALID_PARTITION_VALUE_CHARS = "A-Za-z0-9_-"

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
COLUMN_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
INDEX_RE = re.compile(r"^[a-z0-9][a-z0-9_.+-]*$")
QUEUE_RE = re.compile(r"^[A-Za-z0-9]+$")
HOST_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9.-]*[A-Za-z0-9])?$")


# ---------------------------------------------------------------------------
# Site settings
# ---------------------------------------------------------------------------

def get_hive2es_home() -> Path:
    """Return the settings directory ($HIVE2ES_HOME or ~/.config/hive2es)."""
    env_home = os.environ.get("HIVE2ES_HOME")
    if env_home:
        return Path(env_home)
    return Path("~/.config/hive2es").expanduser()


class Settings:
    """Site settings for hive2es, read from a YAML file."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path
        self.raw_config = self._load_yaml() if config_path else {}

        self.hive_command = self.raw_config.get("hive_command", DEFAULT_HIVE_COMMAND)
        self.kinit_command = self.raw_config.get("kinit_command", DEFAULT_KINIT_COMMAND)
        self.jar_search_paths = list(
            self.raw_config.get("jar_search_paths", DEFAULT_JAR_SEARCH_PATHS)
        )
        self.elasticsearch_hadoop_jar = self.raw_config.get("elasticsearch_hadoop_jar") or None
        self.commons_httpclient_jar = self.raw_config.get("commons_httpclient_jar") or None
        self.failure_cooldown_seconds = self.raw_config.get(
            "failure_cooldown_seconds", DEFAULT_FAILURE_COOLDOWN_SECONDS
        )
        self.job_timeout_seconds = self.raw_config.get(
            "job_timeout_seconds", DEFAULT_JOB_TIMEOUT_SECONDS
        )
        self.logging = self.raw_config.get("logging", {})
        self.env_file = self.raw_config.get("env_file")

    def _load_yaml(self) -> Dict[str, Any]:
        """Load and parse the YAML settings file."""
        if not self.config_path.exists():
            raise ConfigError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax in {self.config_path}: {e}")

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigError(f"Configuration file {self.config_path} must contain a mapping")
        return config

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation, None disables file logging."""
        log_output = self.logging.get("output")
        if not log_output:
            return None
        log_output = log_output.replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        return Path(log_output).expanduser()

    def get_log_level(self) -> str:
        return self.logging.get("level", "INFO").upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "pretty")

    def should_log_to_console(self) -> bool:
        return self.logging.get("console", True)

    def validate(self) -> None:
        """Validate settings values."""
        if not str(self.hive_command).strip():
            raise ConfigError("hive_command must not be empty")

        cooldown = self.failure_cooldown_seconds
        if isinstance(cooldown, bool) or not isinstance(cooldown, (int, float)) or cooldown < 0:
            raise ConfigError(
                f"failure_cooldown_seconds must be a non-negative number, got {cooldown!r}"
            )

        timeout = self.job_timeout_seconds
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigError(f"job_timeout_seconds must be a positive number, got {timeout!r}")
        if timeout > MAX_JOB_TIMEOUT_SECONDS:
            raise ConfigError(
                f"job_timeout_seconds must not exceed {MAX_JOB_TIMEOUT_SECONDS}, got {timeout}"
            )

        if self.get_log_format() not in ("structured", "pretty"):
            raise ConfigError(
                f"logging.format must be 'structured' or 'pretty', got '{self.get_log_format()}'"
            )

    def __repr__(self) -> str:
        return f"Settings(config_path={self.config_path}, hive_command={self.hive_command!r})"


def load_settings(config_path: Optional[Path] = None) -> Settings:
    """
    Load site settings.

    Args:
        config_path: Explicit settings file. Defaults to $HIVE2ES_HOME/config.yaml,
            which may be absent, in which case defaults apply.

    Returns:
        Validated Settings instance

    Raises:
        ConfigError: If the file is invalid, or an explicit path is missing
    """
    if config_path is None:
        default_path = get_hive2es_home() / "config.yaml"
        config_path = default_path if default_path.exists() else None

    settings = Settings(config_path)
    settings.validate()

    # credentials such as ELASTICSEARCH_API_KEY
    if settings.env_file:
        env_path = Path(settings.env_file).expanduser()
        if not env_path.exists():
            raise ConfigError(f"env_file not found: {env_path}")
        load_dotenv(env_path)

    return settings


# ---------------------------------------------------------------------------
# Option validation
# ---------------------------------------------------------------------------

def validate_identifier(value: Optional[str], name: str) -> str:
    """Validate a Hive database, table or view name."""
    if not value:
        raise ConfigError(f"{name} not defined")
    if not IDENTIFIER_RE.match(value):
        raise ConfigError(f"invalid {name} '{value}' defined")
    return value


def validate_column(value: str) -> str:
    if not COLUMN_RE.match(value or ""):
        raise ConfigError(f"invalid column name '{value}' defined")
    return value


def validate_index_name(value: Optional[str], name: str = "Elasticsearch index") -> str:
    """Validate an Elasticsearch index, type or alias name."""
    if not value:
        raise ConfigError(f"{name} not defined")
    if value in (".", "..") or not INDEX_RE.match(value) or len(value) > 255:
        raise ConfigError(
            f"invalid {name} '{value}' defined, must be lowercase alphanumeric "
            "and may contain '_', '-', '.' or '+'"
        )
    return value


def validate_chars(value: str, name: str, chars: str) -> str:
    """Validate a value contains only the given regex bracket chars."""
    if not value or not re.match(rf"^[{chars}]+$", value):
        raise ConfigError(f"invalid {name} '{value}' defined, may only contain: {chars}")
    return value


def validate_port(port: Any) -> int:
    try:
        port = int(port)
    except (TypeError, ValueError):
        raise ConfigError(f"invalid port '{port}' defined, must be an integer")
    if not 1 <= port <= 65535:
        raise ConfigError(f"invalid port '{port}' defined, must be between 1 and 65535")
    return port


def validate_shards(shards: Any) -> int:
    try:
        shards = int(shards)
    except (TypeError, ValueError):
        raise ConfigError(f"invalid shards '{shards}' defined, must be a positive integer")
    if not 1 <= shards <= MAX_SHARDS:
        raise ConfigError(f"invalid shards '{shards}' defined, must be between 1 and {MAX_SHARDS}")
    return shards


def validate_queue(queue: str) -> str:
    if not queue or not QUEUE_RE.match(queue):
        raise ConfigError(f"invalid queue '{queue}' defined, must be alphanumeric")
    return queue


def validate_nodes(nodes: Any) -> List[str]:
    """
    Validate a node list given as a comma/space separated string or a list.

    Returns:
        List of 'host' or 'host:port' entries in the given order
    """
    if isinstance(nodes, str):
        nodes = [nodes]
    parsed: List[str] = []
    for entry in nodes or []:
        for node in re.split(r"[\s,]+", entry.strip()):
            if not node:
                continue
            host, _, port = node.partition(":")
            if not HOST_RE.match(host):
                raise ConfigError(f"invalid node '{node}' defined")
            if port:
                validate_port(port)
            parsed.append(node)
    if not parsed:
        raise ConfigError("no Elasticsearch nodes defined")
    return parsed


def dedupe(items: Iterable[str]) -> List[str]:
    """Remove duplicates preserving first-seen order."""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def read_column_file(path: Path) -> List[str]:
    """
    Read column names from a file, one per line.

    '#' starts a comment, blank lines are ignored.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"column file not found: {path}")

    columns = []
    with open(path, "r") as f:
        for line in f:
            line = line.split("#", 1)[0].strip()
            if line:
                columns.append(line)
    return columns


def split_csv(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [v for v in re.split(r"\s*,\s*", value.strip()) if v]


# ---------------------------------------------------------------------------
# Per-run job configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IndexingConfig:
    """Validated, immutable options for one indexing run."""

    table: str
    index: str
    db: str = DEFAULT_DATABASE
    view: Optional[str] = None
    columns: Tuple[str, ...] = ()
    partition_key: Optional[str] = None
    partitions: Tuple[str, ...] = ()
    type: Optional[str] = None
    alias: Optional[str] = None
    shards: int = DEFAULT_SHARDS
    optimize: bool = False
    queue: str = DEFAULT_QUEUE
    nodes: Tuple[str, ...] = (DEFAULT_NODES,)
    port: int = DEFAULT_PORT
    recreate_index: bool = False
    delete_on_failure: bool = False
    skip_existing: bool = False
    no_task_retries: bool = False
    stop_on_failure: bool = False
    verbose: int = 1
    assume_yes: bool = False

    @property
    def doc_type(self) -> str:
        """Elasticsearch type, defaults to the index name."""
        return self.type or self.index

    @property
    def qualified_table(self) -> str:
        return f"{self.db}.{self.table}"

    @property
    def source_name(self) -> str:
        """Relation the data is selected from (view if given, else table)."""
        return self.view or self.table

    @property
    def es_nodes(self) -> str:
        """Node list as given to the ES-Hadoop 'es.nodes' table property."""
        return ",".join(self.nodes)

    @property
    def es_hosts(self) -> List[str]:
        """Node URLs for the Elasticsearch client, port appended where missing."""
        hosts = []
        for node in self.nodes:
            if ":" not in node:
                node = f"{node}:{self.port}"
            hosts.append(f"http://{node}")
        return hosts

    @classmethod
    def from_options(
        cls,
        table: Optional[str],
        index: Optional[str],
        db: str = DEFAULT_DATABASE,
        view: Optional[str] = None,
        columns: Optional[str] = None,
        column_file: Optional[Path] = None,
        partition_key: Optional[str] = None,
        partition_values: Optional[str] = None,
        type: Optional[str] = None,
        alias: Optional[str] = None,
        shards: Any = DEFAULT_SHARDS,
        optimize: bool = False,
        queue: str = DEFAULT_QUEUE,
        nodes: Any = DEFAULT_NODES,
        port: Any = DEFAULT_PORT,
        recreate_index: bool = False,
        delete_on_failure: bool = False,
        skip_existing: bool = False,
        no_task_retries: bool = False,
        stop_on_failure: bool = False,
        verbose: int = 1,
        assume_yes: bool = False,
    ) -> "IndexingConfig":
        """
        Validate raw options and build the run configuration.

        Raises:
            ConfigError: On any invalid value or conflicting options
        """
        if columns and column_file:
            raise ConfigError("--columns and --column-file are mutually exclusive!")
        if skip_existing and recreate_index:
            raise ConfigError("--skip-existing and --recreate-index are mutually exclusive!")
        if (partition_key is None) != (partition_values is None):
            raise ConfigError(
                "if using partitions must specify both --partition-key and --partition-values"
            )

        node_list = validate_nodes(nodes)
        port = validate_port(port)
        db = validate_identifier(db, "database")
        table = validate_identifier(table, "table")
        if view is not None:
            view = validate_identifier(view, "view")

        column_names = read_column_file(column_file) if column_file else split_csv(columns)
        column_names = dedupe(validate_column(c) for c in column_names)

        index = validate_index_name(index)
        doc_type = validate_index_name(type, "Elasticsearch type") if type else index
        if alias is not None:
            alias = validate_index_name(alias, "Elasticsearch alias")
        shards = validate_shards(shards)
        queue = validate_queue(queue)

        partitions: List[str] = []
        if partition_key is not None:
            partition_key = validate_chars(
                partition_key, "partition key", VALID_PARTITION_KEY_CHARS
            )
            for value in split_csv(partition_values):
                value = validate_chars(value, "partition value", VALID_PARTITION_VALUE_CHARS)
                partitions.append(f"{partition_key}={value}")
            if not partitions:
                raise ConfigError("no partition values defined")
            partitions = dedupe(partitions)

        return cls(
            table=table,
            index=index,
            db=db,
            view=view,
            columns=tuple(column_names),
            partition_key=partition_key,
            partitions=tuple(partitions),
            type=doc_type,
            alias=alias,
            shards=shards,
            optimize=bool(optimize),
            queue=queue,
            nodes=tuple(node_list),
            port=port,
            recreate_index=bool(recreate_index),
            delete_on_failure=bool(delete_on_failure),
            skip_existing=bool(skip_existing),
            no_task_retries=bool(no_task_retries),
            stop_on_failure=bool(stop_on_failure),
            verbose=int(verbose),
            assume_yes=bool(assume_yes),
        )
