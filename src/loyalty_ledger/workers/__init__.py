"""Background workers."""

from .points_expiration import PointsExpirationWorker

__all__ = ["PointsExpirationWorker"]
