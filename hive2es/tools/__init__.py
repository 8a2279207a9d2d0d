"""Tool adapters for the external command line tools driven by hive2es."""

from hive2es.tools.base import ToolAdapter, is_interrupt_exit
from hive2es.tools.hive import HiveAdapter, MetadataProvider
from hive2es.tools.kinit import KerberosAdapter

__all__ = [
    "ToolAdapter",
    "HiveAdapter",
    "KerberosAdapter",
    "MetadataProvider",
    "is_interrupt_exit",
]
