"""
CLI Entrypoint for the Literature Funnel

Collects candidates from Semantic Scholar and OpenAlex, runs the funnel on
them and outputs the result as JSON.
"""

import argparse
import asyncio
import json
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

# Load .env file before importing modules that need env vars
load_dotenv()

from literature_funnel.agent import LiteratureSearchAgent
from literature_funnel.backends.openalex import OpenAlexClient
from literature_funnel.backends.s2 import S2Client
from literature_funnel.config import FunnelConfigError, load_config
from literature_funnel.quality import load_journal_metrics


# Parse command-line arguments
def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Literature Funnel - collect, score and narrow papers from several sources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--query", "-q",
        type=str,
        required=True,
        help="The search query describing papers you're looking for",
    )
    parser.add_argument(
        "--limit-per-source", "-n",
        type=int,
        default=100,
        help="Maximum number of candidates fetched from each source (default: 100)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Per-source collection timeout in seconds (default: 30)",
    )
    parser.add_argument("--target", type=int, default=None, help="Target final count (default: 300)")
    parser.add_argument(
        "--min-acceptable", type=int, default=None, help="Minimum acceptable final count (default: 200)"
    )
    parser.add_argument(
        "--quality-threshold", type=float, default=None, help="Quality threshold 0-100 (default: 40)"
    )
    parser.add_argument("--config", type=str, default=None, help="JSON file with funnel configuration")
    parser.add_argument(
        "--journal-metrics", type=str, default=None, help="JSON or CSV file with journal prestige metrics"
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Output file path (default: print to stdout)",
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> dict:
    """Config file values overridden by explicit flags."""
    config = load_config(args.config).model_dump() if args.config else {}
    overrides = {
        "target_final_count": args.target,
        "min_acceptable_count": args.min_acceptable,
        "quality_threshold": args.quality_threshold,
    }
    config.update({k: v for k, v in overrides.items() if v is not None})
    return config


# Main entry point of the entire program
async def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    journal_table = load_journal_metrics(args.journal_metrics) if args.journal_metrics else None

    # Works without API keys but with stricter rate limits
    if os.environ.get("S2_API_KEY"):
        print("S2 client initialized with API key", file=sys.stderr)
    else:
        print("S2 client initialized (no API key - rate limited)", file=sys.stderr)
    sources = [S2Client(), OpenAlexClient()]

    try:
        agent = LiteratureSearchAgent(
            sources=sources,
            config=build_config(args),
            journal_table=journal_table,
            limit_per_source=args.limit_per_source,
            timeout=args.timeout,
        )
    except FunnelConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        for source in sources:
            await source.close()
        return 2

    try:
        result = await agent.run(query=args.query)
    finally:
        await agent.close()

    # Format output as JSON
    output = json.dumps(result, indent=2, ensure_ascii=False)

    if args.output:  # Write to file
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(output)
        print(f"Results saved to {args.output}", file=sys.stderr)
    else:  # Print to stdout
        print(output)

    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
