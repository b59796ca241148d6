#!/usr/bin/env python3
"""Fetch the interest taxonomy or a recommendation session from a Knest backend."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Iterable, Optional

from knest import config, env, services
from knest.recommendations import RecommendationSessionManager, RecommendationSettings
from knest.store import ObservableStore
from knest.taxonomy import TaxonomyStore


def parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Query the Knest interest taxonomy and circle recommendation endpoints.",
    )
    parser.add_argument("--base-url", help="API base url (default: $KNEST_API_BASE_URL).")
    parser.add_argument(
        "--taxonomy",
        action="store_true",
        help="Print the category -> subcategory -> tag tree instead of recommendations.",
    )
    parser.add_argument(
        "--algorithm",
        choices=config.ALGORITHMS,
        help="Recommendation algorithm (default: saved setting or 'smart').",
    )
    parser.add_argument("--limit", type=int, help="Number of circles to request (clamped to 5-30).")
    parser.add_argument("--diversity", type=float, help="Diversity factor between 0 and 1.")
    parser.add_argument(
        "--exclude",
        action="append",
        default=None,
        metavar="CATEGORY_ID",
        help="Category id to exclude; may be repeated.",
    )
    parser.add_argument(
        "--no-new-circles",
        action="store_true",
        help="Leave newly created circles out of the recommendations.",
    )
    parser.add_argument(
        "--top",
        type=int,
        default=10,
        help="Number of recommendations to print (default: 10).",
    )
    parser.add_argument(
        "--settings",
        type=Path,
        help="JSON file holding saved recommendation settings (default: $KNEST_SETTINGS_PATH).",
    )
    parser.add_argument(
        "--save-settings",
        action="store_true",
        help="Write the effective settings back to the settings file.",
    )
    parser.add_argument(
        "--json",
        type=Path,
        help="Optional path to write the raw session as JSON.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(list(argv))


async def print_taxonomy(client: services.KnestAPIClient, allow_fallback: bool) -> int:
    taxonomy = TaxonomyStore(client, allow_fallback=allow_fallback)
    flattened = await taxonomy.load_full_tree()
    print(f"Taxonomy ({flattened.source.value}):")
    for category in flattened.categories:
        print(f" - {category.name} [{category.id}]")
        for subcategory in taxonomy.subcategories_for(category.id):
            tags = ", ".join(tag.name for tag in taxonomy.tags_for(subcategory.id))
            print(f"     - {subcategory.name} [{subcategory.id}]" + (f": {tags}" if tags else ""))
    return 0 if flattened.categories else 1


async def print_recommendations(
    client: services.KnestAPIClient,
    args: argparse.Namespace,
    settings_path: Optional[Path],
) -> int:
    settings = RecommendationSettings.load(settings_path) if settings_path else RecommendationSettings()
    store = ObservableStore()
    manager = RecommendationSessionManager(client, settings=settings, store=store)
    session = await manager.fetch(
        algorithm=args.algorithm,
        limit=args.limit,
        diversity_factor=args.diversity,
        exclude_categories=args.exclude,
        include_new_circles=False if args.no_new_circles else None,
    )
    if session is None:
        print(f"Fetching recommendations failed: {store.get(config.STORE_KEYS['error'])}", file=sys.stderr)
        return 1

    print(
        f"Session {session.session_id}: {len(session.recommendations)} of "
        f"{session.total_candidates} candidates via {session.algorithm_used} "
        f"in {session.computation_time_ms:.1f}ms"
    )
    for item in session.recommendations[: args.top]:
        reasons = "; ".join(reason.detail for reason in item.reasons) or "none"
        print(
            f" - {item.circle.name:28s} score={item.score:5.2f} "
            f"confidence={item.confidence:4.2f} members={item.circle.member_count:3d} "
            f"reasons={reasons}"
        )

    if args.save_settings and settings_path:
        effective = RecommendationSettings(
            algorithm=args.algorithm or settings.algorithm,
            limit=args.limit if args.limit is not None else settings.limit,
            diversity_factor=args.diversity if args.diversity is not None else settings.diversity_factor,
            excluded_categories=args.exclude if args.exclude is not None else settings.excluded_categories,
            include_new_circles=False if args.no_new_circles else settings.include_new_circles,
        )
        effective.save(settings_path)
        print(f"Saved settings to {settings_path}")

    if args.json:
        args.json.write_text(
            json.dumps(
                {
                    "session_id": session.session_id,
                    "algorithm_used": session.algorithm_used,
                    "total_candidates": session.total_candidates,
                    "computation_time_ms": session.computation_time_ms,
                    "recommendations": [
                        {
                            "circle_id": item.circle_id,
                            "name": item.circle.name,
                            "score": item.score,
                            "confidence": item.confidence,
                            "reasons": [reason.to_payload() for reason in item.reasons],
                        }
                        for item in session.recommendations
                    ],
                },
                indent=2,
            )
        )
    await manager.dispatcher.drain()
    return 0


def main(argv: Iterable[str]) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    env.load_env()
    try:
        client = services.build_live_client(base_url=args.base_url)
        allow_fallback = env.get_bool(config.ENV_ALLOW_SAMPLE_FALLBACK, True)
    except (RuntimeError, ValueError) as exc:
        print(f"Environment not configured correctly: {exc}", file=sys.stderr)
        return 1

    settings_path = args.settings or (
        Path(os.environ[config.ENV_SETTINGS_PATH]) if os.environ.get(config.ENV_SETTINGS_PATH) else None
    )

    try:
        if args.taxonomy:
            return asyncio.run(print_taxonomy(client, allow_fallback))
        return asyncio.run(print_recommendations(client, args, settings_path))
    except ValueError as exc:
        print(f"Invalid recommendation settings: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
