"""Stowage - project backup, integrity validation and restore"""

__version__ = "1.0.0"
