"""Token-budgeted conversation context for chat assistants.

Before each reply, :class:`SmartContextCompressor` assembles recent messages,
stored and freshly generated summaries of older stretches, standing facts and
an optional business snapshot into a :class:`CompressedContext`.

Example:
    from context_compressor import (
        ContextSummarizer,
        InMemoryContextStore,
        SmartContextCompressor,
        UnavailableGenerator,
    )

    compressor = SmartContextCompressor(
        InMemoryContextStore(),
        ContextSummarizer(UnavailableGenerator()),
    )
    context = await compressor.get_compressed_context("u1", "t1", options={"level": "MINIMAL"})

"""

from context_compressor.cache import ContextCache
from context_compressor.compressor import SmartContextCompressor, empty_context
from context_compressor.config import CompressionLevel, CompressionOptions, LLMConfig
from context_compressor.formatting import choose_compression_level, format_compressed_context
from context_compressor.models import (
    CompressedContext,
    CompressionMetadata,
    CompressionStats,
    ContextSummary,
    ConversationContext,
    Message,
    StoreSnapshot,
    TimeRange,
)
from context_compressor.scoring import score_message
from context_compressor.store import (
    ContextStore,
    InMemoryContextStore,
    SqliteContextStore,
    StoreError,
)
from context_compressor.summarizer import (
    ContextSummarizer,
    OpenAITextGenerator,
    SummarizationError,
    UnavailableGenerator,
)

__all__ = [
    "CompressedContext",
    "CompressionLevel",
    "CompressionMetadata",
    "CompressionOptions",
    "CompressionStats",
    "ContextCache",
    "ContextStore",
    "ContextSummarizer",
    "ContextSummary",
    "ConversationContext",
    "InMemoryContextStore",
    "LLMConfig",
    "Message",
    "OpenAITextGenerator",
    "SmartContextCompressor",
    "SqliteContextStore",
    "StoreError",
    "StoreSnapshot",
    "SummarizationError",
    "TimeRange",
    "UnavailableGenerator",
    "choose_compression_level",
    "empty_context",
    "format_compressed_context",
    "score_message",
]
