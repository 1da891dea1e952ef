#!/usr/bin/env python3
"""
Search Intelligence Demo - Demonstrates key functionality.
"""

import asyncio

from config.settings import config
from search_intel.analytics import format_summary
from search_intel.service import create_search_intelligence
from search_intel.storage import MemoryStore


async def demo_search_intelligence():
    """Demonstrate analytics recording and ranked suggestions."""

    print("🚀 **Search Intelligence Feature Demonstration**")
    print("=" * 60)

    intelligence = create_search_intelligence(config, store=MemoryStore())

    # Demo 1: Analytics recording
    print("\n1. 📊 **Analytics Demo**")
    searches = [
        ("machine learning", 120, 15, True),
        ("machine vision", 340, 4, True),
        ("deep machine reasoning", 95, 0, False),
        ("q methodology", 210, 9, True),
    ]
    for query, response_time, results, success in searches:
        intelligence.analytics.track_search(
            query,
            response_time=response_time,
            results_count=results,
            success=success,
            source="manual",
            error_type=None if success else "no_results",
        )
    intelligence.analytics.flush()
    print(format_summary(intelligence.analytics.get_summary()))

    # Demo 2: Saved searches
    print("\n2. 📌 **Saved Search Demo**")
    saved = intelligence.saved_searches.save_search("machine learning ethics", usage_count=12, tags=["ml"])
    print(f"   Saved: '{saved.query}' (used {saved.usage_count} times)")

    # Demo 3: Ranked suggestions
    print("\n3. 💡 **Suggestion Demo**")
    for prefix in ("mach", "symbolic"):
        suggestions = await intelligence.suggestions.get_suggestions(prefix, max_results=5)
        print(f"   Query: '{prefix}'")
        for s in suggestions:
            print(f"   → {s.query} [{s.source.value}, {s.metadata.match_type.value}] score={s.score:.1f}")

    # Demo 4: Privacy controls
    print("\n4. 🔒 **Privacy Demo**")
    intelligence.suggestions.set_personalization_enabled(False)
    suggestions = await intelligence.suggestions.get_suggestions("mach")
    print(f"   Personalization off → {len(suggestions)} suggestions")

    # Demo 5: Export
    print("\n5. 📤 **Export Demo**")
    print(intelligence.analytics.export_data("csv", include_queries=False))

    intelligence.dispose()
    print("\n✅ Demo complete")


if __name__ == "__main__":
    asyncio.run(demo_search_intelligence())
