#!/usr/bin/env python3
"""
main.py — Type Beat Opportunity Engine: Entry Point
=====================================================
Thin CLI over ``typebeat.orchestrator.Orchestrator``.  Credentials and
Redis connection details are read from ``.env``.

Modes
-----
    python main.py analyze "Key Glock"                 # Full opportunity analysis
    python main.py similar "Key Glock" --limit 5       # Related artists, ranked
    python main.py metrics "Pooh Shiesty" --reference "Key Glock"
    python main.py suggest "Drake" --limit 3 --genre trap
    python main.py health                              # Provider + cache status
    python main.py analyze "Drake" --json              # Raw JSON instead of a table

Exit codes: 0 ok, 1 unexpected failure, 2 invalid input.
"""

from __future__ import annotations

import argparse
import json
import sys
import traceback
from typing import Any, Dict

from typebeat.config import load_settings
from typebeat.errors import ValidationError
from typebeat.models import AnalysisResult, ScoreBreakdown, SimilarArtistsResult, SuggestionsResult
from typebeat.orchestrator import DEFAULT_SIMILAR_SOURCES, PROVIDERS, Orchestrator
from typebeat.utils import get_logger

logger = get_logger("typebeat.main")


# ── printing ────────────────────────────────────────────────────────────────

def _print_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def print_breakdown(breakdown: ScoreBreakdown) -> None:
    final = breakdown.final
    print()
    print("  " + "=" * 58)
    print(f"  |   {breakdown.artist_name:<53s}|")
    print("  " + "=" * 58)
    print(f"  |   Overall score:     {final.overall_score:>33.2f} |")
    print(f"  |   Confidence:        {final.confidence_level:>33s} |")
    print(f"  |   Volume:            {final.volume_score:>33.2f} |")
    print(f"  |   Competition:       {final.competition_score:>33.2f} |")
    print(f"  |   Trend:             {final.trend_score:>33.2f} |")
    print(f"  |   Saturation:        {final.saturation_score:>33.2f} |")
    if final.similarity_score is not None:
        print(f"  |   Similarity:        {final.similarity_score:>33.2f} |")
    print(f"  |   Monthly searches:  {breakdown.volume.monthly_searches_estimate:>33,d} |")
    print(f"  |   Competition level: {breakdown.competition.competition_level:>33s} |")
    print(f"  |   Trend direction:   {breakdown.trend.trend_direction:>33s} |")
    if breakdown.fallback_used:
        print(f"  |   {'(neutral defaults: no market data)':<53s}|")
    print("  " + "=" * 58)
    print()


def print_analysis(result: AnalysisResult) -> None:
    if result.breakdown is not None:
        print_breakdown(result.breakdown)
    print(f"  Sources: {', '.join(result.sources) or 'none'}"
          f"   Cached: {result.cached}   {result.processing_time_ms:.0f} ms")
    for provider, kind in sorted(result.provider_errors.items()):
        print(f"  ! {provider}: {kind}")
    if result.fallback_used:
        print("  All providers failed; heuristic suggestions:")
        for s in result.suggestions:
            print(f"    {s.name:<24s} {s.score:5.2f}  {s.confidence}")
    print()


def print_similar(result: SimilarArtistsResult) -> None:
    main_name = result.main_artist.name if result.main_artist else "?"
    print(f"\n  Artists similar to {main_name}  (sources: {', '.join(result.sources) or 'none'})")
    print("  " + "-" * 58)
    for i, cand in enumerate(result.candidates, 1):
        genres = ", ".join(cand.artist.genres[:3])
        print(f"  {i:>2d}. {cand.artist.name:<24s} {cand.score:5.2f}  {genres}")
    for provider, kind in sorted(result.provider_errors.items()):
        print(f"  ! {provider}: {kind}")
    print()


def print_suggestions(result: SuggestionsResult) -> None:
    label = " (heuristic fallback)" if result.fallback_used else ""
    print(f"\n  Type beat opportunities for {result.artist_name}{label}")
    print("  " + "-" * 58)
    if not result.suggestions:
        print("  No candidate passed the quality gate.")
    for i, s in enumerate(result.suggestions, 1):
        print(f"  {i:>2d}. {s.name:<24s} {s.score:5.2f}  {s.confidence:<6s}  {'; '.join(s.reasons)}")
    for provider, kind in sorted(result.provider_errors.items()):
        print(f"  ! {provider}: {kind}")
    print()


# ═════════════════════════════════════════════════════════════════════════════
#  CLI
# ═════════════════════════════════════════════════════════════════════════════

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Type Beat Opportunity Engine",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Print raw JSON instead of the formatted table.",
    )
    parser.add_argument(
        "--no-cache",
        action="store_true",
        default=False,
        help="Bypass cache reads (results are still written back).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("analyze", help="Full opportunity analysis for one artist.")
    p.add_argument("artist", type=str)

    p = sub.add_parser("similar", help="Related artists ranked by similarity.")
    p.add_argument("artist", type=str)
    p.add_argument("--limit", type=int, default=10)
    p.add_argument("--min-similarity", type=float, default=0.3)
    p.add_argument(
        "--sources",
        type=str,
        default=",".join(DEFAULT_SIMILAR_SOURCES),
        help=f"Comma-separated subset of {','.join(PROVIDERS)}.",
    )

    p = sub.add_parser("metrics", help="Market metrics and score breakdown.")
    p.add_argument("artist", type=str)
    p.add_argument("--reference", type=str, default=None,
                   help="Reference artist for the similarity component.")

    p = sub.add_parser("suggest", help="Ranked type-beat opportunities.")
    p.add_argument("artist", type=str)
    p.add_argument("--limit", type=int, default=3)
    p.add_argument("--genre", type=str, default=None)
    p.add_argument("--min-popularity", type=float, default=None)
    p.add_argument("--max-popularity", type=float, default=None)
    p.add_argument("--min-score", type=float, default=None)

    sub.add_parser("health", help="Provider and cache health.")
    sub.add_parser("usage", help="Per-provider request, quota and cache counters.")

    return parser.parse_args(argv)


def run(args: argparse.Namespace, orchestrator: Orchestrator) -> None:
    refresh = args.no_cache
    if args.command == "analyze":
        result = orchestrator.analyze_artist(args.artist, force_refresh=refresh)
        if args.json:
            _print_json(result.to_dict())
        else:
            print_analysis(result)
    elif args.command == "similar":
        sources = [s.strip() for s in args.sources.split(",") if s.strip()]
        result = orchestrator.find_similar_artists(
            args.artist, limit=args.limit, min_similarity=args.min_similarity,
            sources=sources, force_refresh=refresh,
        )
        if args.json:
            _print_json(result.to_dict())
        else:
            print_similar(result)
    elif args.command == "metrics":
        breakdown = orchestrator.calculate_metrics(
            args.artist, args.reference, force_refresh=refresh,
        )
        if args.json:
            _print_json(breakdown.to_dict())
        else:
            print_breakdown(breakdown)
    elif args.command == "suggest":
        filters = {
            k: v for k, v in {
                "genre": args.genre,
                "min_popularity": args.min_popularity,
                "max_popularity": args.max_popularity,
                "min_score": args.min_score,
            }.items() if v is not None
        }
        result = orchestrator.suggest_artists(
            args.artist, limit=args.limit, filters=filters, force_refresh=refresh,
        )
        if args.json:
            _print_json(result.to_dict())
        else:
            print_suggestions(result)
    elif args.command == "health":
        _print_json(orchestrator.health_check(force_refresh=refresh))
    elif args.command == "usage":
        _print_json(orchestrator.usage_stats())


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = load_settings(require_secrets=False)
    orchestrator = Orchestrator(settings)
    try:
        run(args, orchestrator)
    except ValidationError as exc:
        logger.error("Invalid input: %s", exc)
        sys.exit(2)
    except Exception:
        logger.error("Command failed:\n%s", traceback.format_exc())
        sys.exit(1)
    finally:
        orchestrator.close()


if __name__ == "__main__":
    main()
