"""Background jobs for lead distribution."""

from .scheduler import DistributionTaskRunner

__all__ = ["DistributionTaskRunner"]
