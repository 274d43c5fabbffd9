"""Load lifecycle service for shippers and admins."""

from freight.loads.service import AccountDirectory, LoadService

__all__ = ["AccountDirectory", "LoadService"]
