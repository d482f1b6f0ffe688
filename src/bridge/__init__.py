"""Bridge: semantic memory and pattern discovery for experiences.

Stores captured experiences with their qualities and embeddings, recalls
them by text, fields, time, qualities and meaning, and discovers the
patterns they form.

Quick Start:
    from bridge import BridgeContext, ExperienceRecord, RecallInput

    async with BridgeContext.create() as bridge:
        # Capture an experience
        await bridge.capture(
            ExperienceRecord(
                source="Sitting by the window, the morning felt wide open",
                experience=["mood.open", "space", "time"],
            )
        )

        # Recall it
        response = await bridge.search(
            RecallInput(query="morning", qualities={"mood": "open"})
        )

        # Browse the patterns
        roots = await bridge.patterns.browse(depth=1)

Qualities:
    Seven dimensions (embodied, focus, mood, purpose, space, time,
    presence), each with optional subtypes such as ``mood.open`` or
    ``focus.narrow``.
"""

__version__ = "0.1.0"

# Configuration
from .config import PatternSettings, RecallWeights, Settings, settings

# Context
from .context import BridgeContext, bridge_context, get_current_bridge

# Exceptions
from .exceptions import (
    BridgeError,
    ConfigurationError,
    DiscoveryError,
    EmbeddingError,
    NotFoundError,
    QualityFilterError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

# Models
from .models import (
    ExperienceRecord,
    NavigablePattern,
    PatternCache,
    QualityDimension,
    QualityPattern,
    QualitySignature,
)

# Services
from .filters import QualityFilterService
from .patterns import PatternManager
from .service import RecallInput, RecallResponse, RecallService
from .storage import InMemoryRecordStore, RecordStore, VectorStore

__all__ = [
    # Version
    "__version__",
    # Configuration
    "PatternSettings",
    "RecallWeights",
    "Settings",
    "settings",
    # Context
    "BridgeContext",
    "bridge_context",
    "get_current_bridge",
    # Exceptions
    "BridgeError",
    "ConfigurationError",
    "DiscoveryError",
    "EmbeddingError",
    "NotFoundError",
    "QualityFilterError",
    "StorageError",
    "ValidationError",
    # Logging
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "unbind_context",
    # Models
    "ExperienceRecord",
    "NavigablePattern",
    "PatternCache",
    "QualityDimension",
    "QualityPattern",
    "QualitySignature",
    # Services
    "InMemoryRecordStore",
    "PatternManager",
    "QualityFilterService",
    "RecallInput",
    "RecallResponse",
    "RecallService",
    "RecordStore",
    "VectorStore",
]
