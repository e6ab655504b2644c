"""
Message log transports.
"""
from .base import LogReader, LogWriter
from .memory import InMemoryLog
from .mirror_node import MirrorNodeLogReader

__all__ = ["LogReader", "LogWriter", "InMemoryLog", "MirrorNodeLogReader"]
