"""APScheduler-based demand-driven scraping scheduler.

One task exists per (active retailer, priority tier). Each tier has its own
interval ticker that scans the tasks of that tier and executes the ones whose
next_run has elapsed, so high-demand products are re-checked far more often
than the long tail:

    limited_release  every 15 minutes   tracked product pages re-checked one by one
    seasonal         every 30 minutes   full listing crawl
    popular          every 2 hours      full listing crawl
    standard         daily              full listing crawl

An hourly rebalance job promotes tracked standard products whose popularity
grew into the retailer's popular task.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

import structlog
from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from seek.core.timeutils import utcnow
from seek.models.enums import PriorityTier
from seek.models.listing import RetailerListing
from seek.models.product import CatalogProduct
from seek.scrapers.scraper_service import MAX_TRACKED_PRODUCTS, ScraperService
from seek.services.catalog_reconciler import ReconcileReport
from seek.services.product_classifier import ProductClassifier

logger = structlog.get_logger(__name__)

# Discontinued products are never scheduled
SCHEDULED_TIERS = (
    PriorityTier.LIMITED_RELEASE,
    PriorityTier.SEASONAL,
    PriorityTier.POPULAR,
    PriorityTier.STANDARD,
)

# How often each tier's ticker scans for due tasks
TIER_TICK_MINUTES = {
    PriorityTier.LIMITED_RELEASE: 5,
    PriorityTier.SEASONAL: 10,
    PriorityTier.POPULAR: 30,
    PriorityTier.STANDARD: 60,
}

REBALANCE_INTERVAL_MINUTES = 60
PROMOTION_SCORE = 20
FAILURE_BACKOFF = 1.5


@dataclass
class ScheduledTask:
    """Cadence state of one (retailer, tier) pair.

    idle -> due (next_run elapsed) -> running -> idle, with
    next_run = last_run + frequency on success.
    """

    retailer_id: UUID
    priority: PriorityTier
    frequency: int  # minutes
    next_run: datetime
    last_run: Optional[datetime] = None
    product_ids: List[UUID] = field(default_factory=list)

    @property
    def id(self) -> str:
        return task_id(self.retailer_id, self.priority)

    def is_due(self, now: datetime) -> bool:
        return self.next_run <= now


def task_id(retailer_id: UUID, priority: PriorityTier) -> str:
    return f"{retailer_id}_{PriorityTier(priority).value}"


class ScrapingScheduler:
    """Runs per-tier scraping tasks on APScheduler interval tickers.

    This scheduler:
    - Builds one task per active retailer and scheduled tier
    - Executes due tasks of a tier sequentially when its ticker fires
    - Pushes a failed task out by 1.5x its frequency instead of retrying
    - Keeps each task's tracked product ids current as products move tiers
    """

    def __init__(
        self,
        scraper_service: ScraperService,
        classifier: Optional[ProductClassifier] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        """Initialize scraping scheduler.

        Args:
            scraper_service: Orchestration service that runs crawls and re-checks
            classifier: Per-tier frequencies and popularity rescoring, defaults to the service's
            scheduler: APScheduler instance, defaults to a UTC AsyncIOScheduler
        """
        self.service = scraper_service
        self.classifier = classifier or scraper_service.classifier
        self.scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self.tasks: Dict[str, ScheduledTask] = {}
        self.is_running = False
        self.logger = logger.bind(service="scraping_scheduler")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Build the task table, register the tier tickers and start the scheduler."""
        if self.is_running:
            self.logger.warning("scheduler_already_running")
            return

        await self.initialize_tasks()
        for tier in SCHEDULED_TIERS:
            self._add_tier_job(tier)
        self.scheduler.add_job(
            func=self._rebalance_wrapper,
            trigger=IntervalTrigger(minutes=REBALANCE_INTERVAL_MINUTES, timezone="UTC"),
            id="rebalance_tasks",
            name="Rebalance scraping tasks",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        self.is_running = True
        self.logger.info("scheduler_started", total_tasks=len(self.tasks))

    def stop(self) -> None:
        """Stop all tickers without waiting for in-flight tasks.

        Catalog writes already committed by an abandoned task stand.
        """
        if not self.is_running:
            self.logger.warning("scheduler_not_running")
            return

        self.scheduler.shutdown(wait=False)
        self.tasks.clear()
        self.is_running = False
        self.logger.info("scheduler_stopped")

    def _add_tier_job(self, tier: PriorityTier) -> Job:
        job = self.scheduler.add_job(
            func=self._run_tier_wrapper,
            trigger=IntervalTrigger(minutes=TIER_TICK_MINUTES[tier], timezone="UTC"),
            args=[tier],
            id=f"scrape_{tier.value}",
            name=f"Scrape {tier.value} tasks",
            replace_existing=True,
            max_instances=1,  # a tier never overlaps itself
            coalesce=True,
        )
        self.logger.info("tier_job_added", tier=tier.value, tick_minutes=TIER_TICK_MINUTES[tier])
        return job

    # ------------------------------------------------------------------
    # Task table
    # ------------------------------------------------------------------

    async def initialize_tasks(self, now: Optional[datetime] = None) -> int:
        """Create one task per active retailer and scheduled tier.

        Each task starts one frequency period from now and tracks up to 100
        of the retailer's products currently in that tier.

        Returns:
            Number of tasks created
        """
        now = now or utcnow()
        self.tasks.clear()

        for retailer in await self.service.get_active_retailers():
            for tier in SCHEDULED_TIERS:
                frequency = self.classifier.get_scraping_frequency_minutes(tier)
                task = ScheduledTask(
                    retailer_id=retailer.id,
                    priority=tier,
                    frequency=frequency,
                    next_run=now + timedelta(minutes=frequency),
                    product_ids=await self.service.get_product_ids_by_priority(
                        retailer.id, tier, MAX_TRACKED_PRODUCTS
                    ),
                )
                self.tasks[task.id] = task

        self.logger.info("tasks_initialized", count=len(self.tasks))
        return len(self.tasks)

    def track_products(self, task: ScheduledTask, product_ids: Iterable[UUID]) -> int:
        """Add ids to a task's tracked set, keeping the 100 most recent.

        Returns:
            Number of ids newly tracked
        """
        added = 0
        for product_id in product_ids:
            if product_id not in task.product_ids:
                task.product_ids.append(product_id)
                added += 1
        if len(task.product_ids) > MAX_TRACKED_PRODUCTS:
            del task.product_ids[: len(task.product_ids) - MAX_TRACKED_PRODUCTS]
        return added

    def adjust_task_priority(self, retailer_id: UUID, product_id: UUID, priority: PriorityTier) -> bool:
        """Track a product in the task matching its current tier, if there is one."""
        task = self.tasks.get(task_id(retailer_id, priority))
        if task is None:
            return False
        return self.track_products(task, [product_id]) > 0

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _run_tier_wrapper(self, tier: PriorityTier) -> None:
        """Called by APScheduler; nothing may escape into the scheduler loop."""
        try:
            await self.execute_priority_tasks(tier)
        except Exception as e:
            self.logger.error("tier_run_failed", tier=tier.value, error=str(e), exc_info=True)

    async def execute_priority_tasks(self, tier: PriorityTier, now: Optional[datetime] = None) -> int:
        """Run every due task of one tier, one after another.

        Returns:
            Number of tasks executed
        """
        now = now or utcnow()
        due = [task for task in self.tasks.values() if task.priority == tier and task.is_due(now)]
        if not due:
            return 0

        self.logger.info("running_tier_tasks", tier=tier.value, count=len(due))
        for task in due:
            try:
                await self.execute_task(task)
            except Exception as e:
                task.next_run = now + timedelta(minutes=task.frequency * FAILURE_BACKOFF)
                self.logger.error(
                    "task_failed",
                    task_id=task.id,
                    error=str(e),
                    next_run=task.next_run.isoformat(),
                )
                continue

            task.last_run = now
            task.next_run = now + timedelta(minutes=task.frequency)
        return len(due)

    async def execute_task(self, task: ScheduledTask) -> Optional[ReconcileReport]:
        """Run one task: tracked-page re-checks for limited releases, else a full crawl.

        A retailer deleted since the task was created is logged and the
        cycle skipped; the task stays in the table.
        """
        retailer = await self.service.get_retailer(task.retailer_id)
        if retailer is None:
            self.logger.error("retailer_not_found", task_id=task.id, retailer_id=str(task.retailer_id))
            return None

        trigger = f"scheduler:{task.priority.value}"
        if task.priority == PriorityTier.LIMITED_RELEASE and task.product_ids:
            report = await self.service.scrape_retailer_products(retailer, list(task.product_ids), trigger=trigger)
        else:
            report = await self.service.scrape_retailer(retailer, trigger=trigger)

        for product_id, priority in report.touched.items():
            self.adjust_task_priority(task.retailer_id, product_id, priority)

        self.logger.info("task_completed", task_id=task.id, **report.as_dict())
        return report

    # ------------------------------------------------------------------
    # Rebalancing
    # ------------------------------------------------------------------

    async def _rebalance_wrapper(self) -> None:
        try:
            await self.rebalance_tasks()
        except Exception as e:
            self.logger.error("rebalance_failed", error=str(e), exc_info=True)

    async def rebalance_tasks(self, now: Optional[datetime] = None) -> int:
        """Promote tracked standard products whose popularity has risen to 20 or more.

        Scores are recomputed from search counts, volatility and listing
        history before the threshold is applied, and written back.

        Returns:
            Number of ids newly tracked by popular tasks
        """
        now = now or utcnow()
        promoted = 0
        rescored = 0
        for task in list(self.tasks.values()):
            if task.priority != PriorityTier.STANDARD or not task.product_ids:
                continue
            popular_task = self.tasks.get(task_id(task.retailer_id, PriorityTier.POPULAR))
            if popular_task is None:
                continue

            async with self.service.session_factory() as db:
                result = await db.execute(
                    select(CatalogProduct)
                    .options(selectinload(CatalogProduct.listings).selectinload(RetailerListing.price_history))
                    .where(CatalogProduct.id.in_(task.product_ids))
                )
                risen = []
                for product in result.scalars().all():
                    score = self.classifier.update_popularity_score(product, now=now)
                    if score != product.popularity_score:
                        product.popularity_score = score
                        rescored += 1
                    if score >= PROMOTION_SCORE:
                        risen.append(product.id)
                await db.commit()

            if risen:
                promoted += self.track_products(popular_task, risen)

        self.logger.info("tasks_rebalanced", promoted=promoted, rescored=rescored)
        return promoted

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> dict:
        """Running flag, task counts per tier and the ten soonest runs."""
        tasks_by_priority: Dict[str, int] = {}
        for task in self.tasks.values():
            tasks_by_priority[task.priority.value] = tasks_by_priority.get(task.priority.value, 0) + 1

        upcoming: List[Tuple[datetime, ScheduledTask]] = sorted(
            ((task.next_run, task) for task in self.tasks.values()),
            key=lambda pair: pair[0],
        )
        return {
            "is_running": self.is_running,
            "total_tasks": len(self.tasks),
            "tasks_by_priority": tasks_by_priority,
            "next_runs": [
                {
                    "id": task.id,
                    "priority": task.priority.value,
                    "next_run": next_run.isoformat(),
                    "product_count": len(task.product_ids),
                }
                for next_run, task in upcoming[:10]
            ],
        }
