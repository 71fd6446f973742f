"""Command line driver for the scraping pipeline.

Usage:
    # Crawl every active retailer
    seek-scrape all

    # Crawl one retailer (slug or part of its name)
    seek-scrape smokingpipes

    # Re-check limited-release product pages only
    seek-scrape limited

    # Run the demand-driven scheduler until interrupted
    seek-scrape scheduler

    # Catalog statistics, recent alerts, seeding and maintenance
    seek-scrape stats
    seek-scrape alerts --limit 20
    seek-scrape runs --limit 10
    seek-scrape seed
    seek-scrape repair

Setup (run once):
    pip install -e .
    playwright install chromium
"""

import argparse
import asyncio
import json
import signal
import sys
from dataclasses import dataclass
from typing import List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from seek.config import settings
from seek.core.exceptions import SeekException
from seek.core.logging import configure_logging
from seek.db.seed import seed_retailers
from seek.db.session import create_engine_for, create_session_factory
from seek.db.utils import check_database_health, create_all
from seek.models.enums import AlertType
from seek.scrapers.factory import ScraperFactory
from seek.scrapers.scheduler import ScrapingScheduler
from seek.scrapers.scraper_service import ScraperService
from seek.services.alert_system import AlertSystem, PersistenceAlertSink
from seek.services.product_classifier import ProductClassifier

logger = structlog.get_logger(__name__)

COMMANDS = ("all", "stats", "scheduler", "limited", "alerts", "runs", "seed", "repair")


@dataclass
class Pipeline:
    """Wired service graph for one process."""

    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    classifier: ProductClassifier
    alert_system: AlertSystem
    persistence_sink: PersistenceAlertSink
    service: ScraperService
    scheduler: ScrapingScheduler


def build_pipeline(database_url: Optional[str] = None) -> Pipeline:
    """Construct the services in dependency order.

    settings -> session factory -> classifier -> alert system ->
    scraper factory -> scraper service -> scheduler
    """
    engine = create_engine_for(database_url or settings.DATABASE_URL, echo=settings.DEBUG)
    session_factory = create_session_factory(engine)
    classifier = ProductClassifier()
    persistence_sink = PersistenceAlertSink(session_factory)
    alert_system = AlertSystem(persistence_sink=persistence_sink)
    service = ScraperService(session_factory, classifier, alert_system, ScraperFactory())
    scheduler = ScrapingScheduler(service, classifier)
    return Pipeline(engine, session_factory, classifier, alert_system, persistence_sink, service, scheduler)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str, ensure_ascii=False))


async def _run_scheduler(pipeline: Pipeline) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises
            pass

    await pipeline.scheduler.start()
    _print_json(pipeline.scheduler.get_status())
    try:
        await stop_event.wait()
    finally:
        pipeline.scheduler.stop()


async def run_command(command: str, pipeline: Pipeline, limit: int = 20, alert_type: Optional[str] = None) -> int:
    """Dispatch one verb. Returns the process exit code."""
    service = pipeline.service

    if command == "all":
        _print_json(await service.scrape_all_retailers())
    elif command == "stats":
        _print_json(await service.get_scraping_stats())
    elif command == "scheduler":
        await _run_scheduler(pipeline)
    elif command == "limited":
        _print_json(await service.scrape_limited_releases())
    elif command == "alerts":
        records = await pipeline.persistence_sink.fetch_recent(
            limit=limit,
            alert_type=AlertType(alert_type) if alert_type else None,
        )
        _print_json(
            [
                {
                    "id": record.alert_id,
                    "type": record.type.value,
                    "priority": record.priority.value,
                    "product": record.product_name,
                    "brand": record.brand,
                    "message": record.message,
                    "timestamp": record.timestamp.isoformat(),
                }
                for record in records
            ]
        )
    elif command == "runs":
        _print_json(
            [
                {
                    "retailer_id": str(run.retailer_id),
                    "trigger": run.trigger,
                    "status": run.status,
                    "started_at": run.started_at.isoformat(),
                    "duration_seconds": run.duration_seconds,
                    "found": run.items_found,
                    "created": run.items_created,
                    "updated": run.items_updated,
                    "failed": run.items_failed,
                    "error": run.error_message,
                }
                for run in await service.get_recent_runs(limit=limit)
            ]
        )
    elif command == "seed":
        async with pipeline.session_factory() as db:
            created = await seed_retailers(db)
        print(f"Seeded {created} retailer(s)")
    elif command == "repair":
        _print_json(await service.repair_catalog())
    else:
        retailer = await service.find_retailer(command)
        if retailer is None:
            logger.error("retailer_not_found", retailer=command)
            print(f"Retailer not found: {command}", file=sys.stderr)
            return 1
        report = await service.scrape_retailer(retailer)
        _print_json(report.as_dict())
    return 0


async def main_async(args: argparse.Namespace) -> int:
    pipeline = build_pipeline(args.database_url)
    logger.info("command_started", command=args.command, environment=settings.ENVIRONMENT)
    try:
        if not await check_database_health(pipeline.engine):
            print("Database is not reachable; check DATABASE_URL", file=sys.stderr)
            return 1
        await create_all(pipeline.engine)
        return await run_command(args.command, pipeline, limit=args.limit, alert_type=args.alert_type)
    except SeekException as e:
        logger.error("command_failed", command=args.command, error=e.message)
        return 1
    finally:
        await pipeline.engine.dispose()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="seek-scrape",
        description="Tobacco catalog scraper: crawls, scheduler, stats and alerts.",
    )
    parser.add_argument(
        "command",
        help=f"One of {', '.join(COMMANDS)}, or a retailer slug/name to crawl",
    )
    parser.add_argument("--limit", type=int, default=20, help="Number of alerts or runs to show (alerts, runs)")
    parser.add_argument(
        "--type",
        dest="alert_type",
        choices=[alert_type.value for alert_type in AlertType],
        help="Only show alerts of this type (alerts)",
    )
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(level=args.log_level)
    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
