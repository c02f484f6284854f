"""Shared database models."""

from .base import Base
from .queue import ScanQueueEntry
from .report import Report

__all__ = ["Base", "Report", "ScanQueueEntry"]
