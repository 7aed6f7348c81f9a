"""Command-line interface for the crawl service."""

import asyncio
import json
import sys
from typing import List, Optional

from crawlaudit.config import Config
from crawlaudit.crawler import CrawlOrchestrator
from crawlaudit.errors import InvalidRequestError
from crawlaudit.logging_config import setup_logging
from crawlaudit.request import CrawlRequest, WcagLevels


def parse_levels(value: str) -> WcagLevels:
    """Parse "A,AA" into WcagLevels; unknown names are rejected."""
    names = {part.strip().upper() for part in value.split(",") if part.strip()}
    unknown = names - {"A", "AA", "AAA"}
    if unknown:
        raise InvalidRequestError(f"Unknown WCAG level(s): {', '.join(sorted(unknown))}")
    return WcagLevels(A="A" in names, AA="AA" in names, AAA="AAA" in names)


async def _async_crawl(request: CrawlRequest, config: Config, out=None) -> Optional[dict]:
    """Run one crawl, writing each frame as an NDJSON line.

    Returns:
        The last frame emitted
    """
    out = out or sys.stdout
    orchestrator = CrawlOrchestrator(request, config=config)
    last_frame = None
    async for frame in orchestrator.run():
        out.write(json.dumps(frame) + "\n")
        out.flush()
        last_frame = frame
    return last_frame


def crawl_command(args, config: Config) -> int:
    """Handle the crawl command."""
    try:
        levels = parse_levels(args.levels)
    except InvalidRequestError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    request = CrawlRequest(
        url=args.url,
        take_screenshots=args.screenshots,
        crawl_entire_website=args.entire_site,
        check_accessibility=args.accessibility,
        wcag_levels=levels,
        increase_timeout=args.increase_timeout,
        slow_rate_limit=args.slow,
        concurrent_pages=args.concurrency,
    )

    try:
        last_frame = asyncio.run(_async_crawl(request, config))
    except KeyboardInterrupt:
        print("\nCrawl interrupted", file=sys.stderr)
        return 130

    if last_frame is None or "error" in last_frame:
        return 1
    return 0


def serve_command(args, config: Config) -> int:
    """Handle the serve command."""
    import uvicorn

    from crawlaudit.server import create_app

    uvicorn.run(
        create_app(config),
        host=args.host or config.host,
        port=args.port or config.port,
        log_level=config.log_level.lower(),
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="crawlaudit - Crawl websites, capture screenshots and audit accessibility"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set logging verbosity (default: LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to file in addition to console",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API.")
    serve_parser.add_argument("--host", help="Bind address (default: CRAWLAUDIT_HOST)")
    serve_parser.add_argument("--port", type=int, help="Port (default: CRAWLAUDIT_PORT)")
    serve_parser.set_defaults(func=serve_command)

    crawl_parser = subparsers.add_parser(
        "crawl", help="Crawl a URL and print progress frames as NDJSON."
    )
    crawl_parser.add_argument("url", help="Seed URL")
    crawl_parser.add_argument(
        "--screenshots",
        action="store_true",
        help="Capture a full-page screenshot of each page",
    )
    crawl_parser.add_argument(
        "--entire-site",
        action="store_true",
        help="Crawl every in-domain page (sitemap, else link-following)",
    )
    crawl_parser.add_argument(
        "--accessibility",
        action="store_true",
        help="Run the accessibility audit on each page",
    )
    crawl_parser.add_argument(
        "--levels",
        default="A,AA",
        help="WCAG levels to report, comma-separated (default: A,AA)",
    )
    crawl_parser.add_argument(
        "--increase-timeout",
        action="store_true",
        help="Double the navigation timeout (120s)",
    )
    crawl_parser.add_argument(
        "--slow",
        action="store_true",
        help="Pause between pages and waves",
    )
    crawl_parser.add_argument(
        "--concurrency",
        type=int,
        default=3,
        help="Pages fetched concurrently, 1-5 (default: 3)",
    )
    crawl_parser.set_defaults(func=crawl_command)

    args = parser.parse_args(argv)

    config = Config.from_env()
    if args.log_level:
        config.log_level = args.log_level
    if args.log_file:
        config.log_file = args.log_file

    setup_logging(level=config.log_level, log_file=config.log_file)

    if hasattr(args, "func"):
        return args.func(args, config)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
