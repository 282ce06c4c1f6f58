#!/usr/bin/env python3
"""
Command Line Interface
======================
Run a scraps config file.

    python -m scraps site.json
    python -m scraps site.json --parallel 2 --static --output-json run.json

``SCRAPS_CACHE_DIR`` / ``SCRAPS_OUTPUT_DIR`` (environment or ``.env``)
override the config's ``cacheDir`` / ``outputDir`` settings.
"""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from .config import load_config
from .errors import ConfigError, ContractViolation
from .main import Scraps

# Load .env before reading any override
env_path = Path.cwd() / '.env'
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()

logger = logging.getLogger(__name__)


def print_summary(stats: dict, errors: list):
    """Print run summary."""
    print("\n" + "=" * 65)
    print("SCRAPS RUN COMPLETE")
    print("=" * 65)
    print(f"  Pages opened:        {stats.get('pages_opened', 0)}")
    print(f"  Entities extracted:  {stats.get('entities_extracted', 0)}")
    if stats.get('limit_skips', 0) > 0:
        print(f"  Limit skips:         {stats.get('limit_skips', 0)}")
    print(f"  Failed pages:        {len(errors)}")
    print(f"  Total time:          {stats.get('elapsed_sec', 0):.1f}s")
    print(f"  Stop reason:         {stats.get('stop_reason', 'completed')}")
    print("=" * 65)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='python -m scraps',
        description='Crawl a site and extract structured entities from a JSON config',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m scraps site.json
  python -m scraps site.json --parallel 2
  python -m scraps site.json --static --output-json run.json
        """
    )
    parser.add_argument('config', help='Path to the JSON config file')
    parser.add_argument('--parallel', type=int, help='Override maxParallelPages')
    parser.add_argument('--static', action='store_true',
                        help='Use the requests + BeautifulSoup backend (no JavaScript)')
    parser.add_argument('--output-json', type=str,
                        help='Also write all entities, stats and errors to one JSON file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    return parser


def run_cli_with_args(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s | %(levelname)s | %(message)s',
        datefmt='%H:%M:%S'
    )

    try:
        config = load_config(args.config)
        overrides = {}
        if args.parallel:
            overrides['max_parallel_pages'] = args.parallel
        if args.static:
            overrides['backend'] = 'static'
        if os.getenv('SCRAPS_CACHE_DIR'):
            overrides['cache_dir'] = os.getenv('SCRAPS_CACHE_DIR')
        if os.getenv('SCRAPS_OUTPUT_DIR'):
            overrides['output_dir'] = os.getenv('SCRAPS_OUTPUT_DIR')
        if overrides:
            config.settings = replace(config.settings, **overrides)
        scraps = Scraps(config)
    except ConfigError as e:
        logger.error(f"Invalid config: {e}")
        return 2

    try:
        result = asyncio.run(scraps.start())
    except ContractViolation as e:
        logger.error(f"Run aborted: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130

    if args.output_json:
        path = scraps.export_json(result, args.output_json)
        print("\n" + "-" * 40)
        print(f"  Exported: {path}")
        print("-" * 40)

    print_summary(result.stats, result.errors)
    return 0


if __name__ == '__main__':
    sys.exit(run_cli_with_args())
