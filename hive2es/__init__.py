"""
hive2es - Hive to Elasticsearch partition indexer

Indexes Hive tables (optionally through a transform view) into Elasticsearch,
one partition at a time, via the ES-Hadoop storage handler.
"""

__version__ = "0.7.1"


__all__ = ["IndexingConfig", "Settings", "load_settings"]

from .config import IndexingConfig, Settings, load_settings
