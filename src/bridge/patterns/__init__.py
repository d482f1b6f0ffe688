"""Pattern discovery and maintenance for Bridge.

Example:
    ```python
    from bridge.patterns import PatternManager

    manager = PatternManager(records=store, settings=settings)
    await manager.initialize()
    for root in await manager.browse(depth=2):
        print(root.id, root.name, [c.name for c in root.children])
    ```
"""

from .discovery import DiscoveryConfig, DiscoveryResult, DiscoveryStatistics, PatternDiscovery
from .incremental import IncrementalConfig, IncrementalPatternUpdate, UpdateResult, UpdateStats
from .keywords import QualityAwareKeywordExtractor
from .manager import IDLE, DebounceState, Idle, PatternManager, Pending

__all__ = [
    # Manager
    "IDLE",
    "DebounceState",
    "Idle",
    "PatternManager",
    "Pending",
    # Discovery
    "DiscoveryConfig",
    "DiscoveryResult",
    "DiscoveryStatistics",
    "PatternDiscovery",
    "QualityAwareKeywordExtractor",
    # Incremental
    "IncrementalConfig",
    "IncrementalPatternUpdate",
    "UpdateResult",
    "UpdateStats",
]
