"""Prompt templates for conversation-segment summarization."""

SYSTEM_PROMPT = (
    "You are a concise conversation summarizer. "
    "Reply with a single JSON object and nothing else."
)

SEGMENT_SUMMARY_PROMPT = """Summarize this conversation segment focusing on:
1. Key topics discussed
2. Important decisions made
3. Action items or tasks
4. User preferences revealed
5. Store/business context mentioned

Conversation:
{transcript}

Respond with JSON only, using exactly these keys:
{{
  "summary": "Brief overview of the conversation",
  "key_topics": ["topic1", "topic2"],
  "important_decisions": ["decision1"],
  "relevance_score": 0.8
}}

"relevance_score" is a number between 0 and 1 rating how useful this segment
is as context for future replies.""".strip()

FALLBACK_SUMMARY_TEMPLATE = "Conversation with {count} messages covering various topics"


def format_transcript(lines: list[tuple[str, str]]) -> str:
    """Render ``(role, content)`` pairs as ``role: content`` lines."""
    return "\n".join(f"{role}: {content}" for role, content in lines)
