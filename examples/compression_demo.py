"""Demonstrate context compression on a synthetic shop-assistant thread.

The script seeds an in-memory store with a day and a half of conversation,
a couple of standing facts and a store snapshot, then prints the compressed
context at every compression level.

Usage:
    python examples/compression_demo.py

    # Summarize old stretches with a real model instead of fallbacks
    python examples/compression_demo.py --base-url http://localhost:8000/v1 --model gpt-4o-mini
"""  # noqa: INP001

from __future__ import annotations

import argparse
import asyncio
import textwrap
from datetime import UTC, datetime, timedelta

from context_compressor import (
    CompressionLevel,
    ContextSummarizer,
    ConversationContext,
    InMemoryContextStore,
    LLMConfig,
    Message,
    OpenAITextGenerator,
    SmartContextCompressor,
    UnavailableGenerator,
    format_compressed_context,
)
from context_compressor.models import StoreIdentity, StoreMetric

# (hours ago, role, content)
CONVERSATION: list[tuple[float, str, str]] = [
    (36, "user", "Can you help me set up shipping zones for Europe?"),
    (35.5, "assistant", "Sure. I created a zone for the EU with a flat rate of 9 EUR."),
    (35, "user", "Great, I approved that. Add Switzerland separately."),
    (34, "assistant", "Done, Switzerland now has its own zone at 14 EUR."),
    (20, "user", "Why did revenue drop yesterday?"),
    (19.5, "assistant", "Two best sellers went out of stock around noon."),
    (19, "user", "Set a low stock alert at 10 units for both."),
    (18.5, "assistant", "Configured: alerts fire below 10 units."),
    (9, "user", "Draft a newsletter about the summer sale."),
    (8.5, "assistant", "Here is a draft with three featured products."),
    (8, "user", "Shorter please, and mention free shipping over 50 EUR."),
    (1, "user", "How many orders came in this morning?"),
    (0.5, "assistant", "You have 42 orders so far today."),
]


def build_store(now: datetime) -> InMemoryContextStore:
    """Seed a store with the demo conversation."""
    store = InMemoryContextStore()
    store.add_messages(
        Message(
            id=f"demo-{i}",
            user_id="demo-user",
            thread_id="demo-thread",
            session_id="demo-session",
            role=role,
            content=content,
            timestamp=now - timedelta(hours=hours_ago),
        )
        for i, (hours_ago, role, content) in enumerate(CONVERSATION)
    )
    store.add_facts(
        [
            ConversationContext(
                id="fact-currency",
                user_id="demo-user",
                session_id="demo-session",
                context_type="preference",
                context_data={"currency": "EUR", "tone": "concise"},
                relevance_score=0.9,
                created_at=now - timedelta(days=3),
            ),
        ],
    )
    store.set_store(
        "demo-user",
        StoreIdentity(id="store-1", name="Alpine Outfitters", domain="alpine.shop", plan="pro"),
        [
            StoreMetric(metric_name="total_orders", metric_value=42, updated_at=now),
            StoreMetric(metric_name="inventory_alerts", metric_value=2, updated_at=now),
        ],
    )
    return store


async def main() -> None:
    """Run the demo."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--base-url", help="OpenAI-compatible endpoint for summaries")
    parser.add_argument("--model", default="gpt-4o-mini")
    parser.add_argument("--api-key", default=None)
    args = parser.parse_args()

    now = datetime.now(UTC)
    if args.base_url:
        generator = OpenAITextGenerator(
            LLMConfig(openai_base_url=args.base_url, model=args.model, api_key=args.api_key),
        )
    else:
        generator = UnavailableGenerator()

    for level in CompressionLevel:
        # Fresh store per level so every level summarizes its own window.
        compressor = SmartContextCompressor(build_store(now), ContextSummarizer(generator))
        context = await compressor.get_compressed_context(
            "demo-user",
            "demo-thread",
            "demo-session",
            options={"level": level},
        )
        print(f"\n{'=' * 20} {level.value} {'=' * 20}")
        print(textwrap.indent(format_compressed_context(context), "  "))
        print(f"  ~{context.total_tokens_estimate} tokens")


if __name__ == "__main__":
    asyncio.run(main())
