"""Core configuration for lead distribution."""

from .config import DistributionConfig, DistributionConfigManager

__all__ = [
    "DistributionConfig",
    "DistributionConfigManager",
]
