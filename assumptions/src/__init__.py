"""
SSV Assumptions Engine - Aggregation, Caching and Projection

This module provides the backend behind the assumptions dashboard:
- MarketPoller: Orchestrator running one poll cycle per tick
- SourceManager: Per-source error slots
- HistoryStore: Rolling price history with calendar-window averages
- HistorySeeder: One-time history backfill with a synthetic fallback
- FeeDecoder: Heuristic decoding of the on-chain network fee
- FeeProjector: Gated yearly fee projection
- SnapshotCache: Read model served by the HTTP facade
- fetchers: Upstream source adapters
"""

from .config import EngineConfig
from .FeeDecoder import classify_fee, decode_network_fee, decode_return_data
from .FeeProjector import FeeProjector, ProjectionResult
from .HistorySeeder import HistorySeeder
from .HistoryStore import HistoryStore
from .MarketPoller import MarketPoller
from .SnapshotCache import Snapshot, SnapshotCache
from .SourceManager import SourceManager, SourceStatus

__all__ = [
    "EngineConfig",
    "FeeProjector",
    "HistorySeeder",
    "HistoryStore",
    "MarketPoller",
    "ProjectionResult",
    "Snapshot",
    "SnapshotCache",
    "SourceManager",
    "SourceStatus",
    "classify_fee",
    "decode_network_fee",
    "decode_return_data",
]
