"""
Database layer: tenant-aware connection routing.
"""

from .router import ConnectionRouter, ConnectionState, PoolEntry

__all__ = ["ConnectionRouter", "ConnectionState", "PoolEntry"]
