"""Utility classes and functions for lanpeers."""

from lanpeers.util.ip import (
    get_all_address_strings,
    host_address_provider,
)
from lanpeers.util.stopable import Stopable, TaskWorker

__all__ = [
    "Stopable",
    "TaskWorker",
    "get_all_address_strings",
    "host_address_provider",
]
