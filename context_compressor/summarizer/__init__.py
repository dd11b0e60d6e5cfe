"""Segment summarization for gap-filling.

Turns a contiguous group of chat messages into a compact ``ContextSummary``
(overview, topics, decisions, self-reported relevance). The external
language-generation call is bounded by a timeout; on any failure the
summarizer degrades to a deterministic fallback summary.

Example:
    from context_compressor.config import LLMConfig
    from context_compressor.summarizer import ContextSummarizer, OpenAITextGenerator

    generator = OpenAITextGenerator(
        LLMConfig(openai_base_url="http://localhost:8000/v1", model="gpt-4o-mini"),
    )
    summarizer = ContextSummarizer(generator)
    summary = await summarizer.summarize(messages, time_range)

"""

from context_compressor.summarizer._llm import (
    OpenAITextGenerator,
    TextGenerator,
    UnavailableGenerator,
)
from context_compressor.summarizer.models import (
    ParsedSummary,
    ParseFailure,
    SummarizationError,
    SummaryPayload,
)
from context_compressor.summarizer.segment import ContextSummarizer, parse_summary_reply

__all__ = [
    "ContextSummarizer",
    "OpenAITextGenerator",
    "ParseFailure",
    "ParsedSummary",
    "SummarizationError",
    "SummaryPayload",
    "TextGenerator",
    "UnavailableGenerator",
    "parse_summary_reply",
]
