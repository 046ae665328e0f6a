"""
clusterupgrade - release upgrade verification for replicated key-value clusters
"""

__version__ = "0.1.0"

from .core import HarnessError, UpgradeHarness

__all__ = ["UpgradeHarness", "HarnessError"]
