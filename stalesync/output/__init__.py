# Stalesync Output Module
# Rich console output and the event log

from stalesync.output.console import Console, ConsoleObserver, TypeStatus, format_duration, format_timestamp
from stalesync.output.log import SyncLogObserver, read_log_tail

__all__ = [
    "Console",
    "ConsoleObserver",
    "TypeStatus",
    "format_duration",
    "format_timestamp",
    "SyncLogObserver",
    "read_log_tail",
]
