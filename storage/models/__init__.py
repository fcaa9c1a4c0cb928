"""
Storage Models Package.

============================================================
MODEL ORGANIZATION
============================================================
- Base, TimestampMixin (base.py)
- ProtocolStateSnapshot (state_snapshot.py)

============================================================
"""

from storage.models.base import Base, TimestampMixin
from storage.models.state_snapshot import ProtocolStateSnapshot

__all__ = [
    "Base",
    "TimestampMixin",
    "ProtocolStateSnapshot",
]
