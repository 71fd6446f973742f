"""Rule-driven alerting on catalog changes.

The reconciler reports stock, price and new-product events through the
check_* entry points. Each builds a candidate Alert with a computed
priority, evaluates it against the active rules and, only if at least one
rule matches, retains it in a bounded ring and runs the actions of every
matching rule (console log, persistence, webhook). Retained alerts are also
handed to every subscribed sink.

Delivery is best-effort: a failing sink is logged and never retried, and
never affects the catalog write that produced the event.
"""

import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Deque, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from seek.config import settings
from seek.core.timeutils import utcnow
from seek.models.alert import AlertRecord
from seek.models.enums import AlertPriority, AlertType, Availability, PriorityTier, ReleaseType
from seek.models.product import CatalogProduct

logger = structlog.get_logger(__name__)

MAX_RETAINED_ALERTS = 1000

# Relative price moves below this percentage are noise
MIN_PRICE_CHANGE_PERCENT = 5.0


@dataclass(frozen=True)
class Alert:
    """Immutable record of a detected change."""

    id: str
    type: AlertType
    product_id: str
    product_name: str
    brand: str
    message: str
    priority: AlertPriority
    data: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    retailers: Tuple[str, ...] = ()

    def to_payload(self) -> dict:
        """Fixed JSON envelope sent to webhooks."""
        return {
            "alert_id": self.id,
            "type": self.type.value,
            "product_name": self.product_name,
            "brand": self.brand,
            "message": self.message,
            "priority": self.priority.value,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


@dataclass
class AlertRule:
    """Binds an alert type to conditions and actions.

    Every condition that is set must hold; unset conditions are not checked.
    A condition on a payload value the alert does not carry (e.g. max_price
    on a stock alert) is skipped.
    """

    id: str
    type: AlertType
    enabled: bool = True
    # Conditions
    brands: Sequence[str] = ()
    min_popularity_score: Optional[int] = None
    max_price: Optional[float] = None
    keywords: Sequence[str] = ()
    # Actions
    log_to_console: bool = True
    save_to_database: bool = True
    webhook_url: Optional[str] = None

    def matches(self, alert: Alert) -> bool:
        if not self.enabled or alert.type != self.type:
            return False

        if self.brands:
            brand = (alert.brand or "").lower()
            if not any(candidate.lower() in brand for candidate in self.brands):
                return False

        if self.min_popularity_score is not None:
            score = alert.data.get("popularity_score")
            if score is not None and score < self.min_popularity_score:
                return False

        if self.max_price is not None:
            price = alert.data.get("price", alert.data.get("new_price"))
            if price is not None and price > self.max_price:
                return False

        if self.keywords:
            text = f"{alert.product_name} {alert.brand}".lower()
            if not any(keyword.lower() in text for keyword in self.keywords):
                return False

        return True


def default_rules(webhook_url: Optional[str] = None) -> List[AlertRule]:
    """Built-in rule set: limited releases, Esoterica restocks, price drops, McClelland seasonals."""
    webhook_url = webhook_url or None
    return [
        AlertRule(
            id="limited_release",
            type=AlertType.LIMITED_RELEASE,
            min_popularity_score=40,
            webhook_url=webhook_url,
        ),
        AlertRule(
            id="esoterica_restock",
            type=AlertType.RESTOCK,
            brands=("Esoterica",),
            webhook_url=webhook_url,
        ),
        AlertRule(
            id="significant_price_drop",
            type=AlertType.PRICE_DROP,
            min_popularity_score=20,
            webhook_url=webhook_url,
        ),
        AlertRule(
            id="mcclelland_stock",
            type=AlertType.STOCK_CHANGE,
            brands=("McClelland",),
            keywords=("christmas", "holiday", "seasonal"),
            webhook_url=webhook_url,
        ),
    ]


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


@runtime_checkable
class AlertSink(Protocol):
    """Observer receiving retained alerts."""

    async def handle(self, alert: Alert) -> None:
        ...


class ConsoleAlertSink:
    """Writes alerts to the structured log."""

    def __init__(self):
        self.logger = logger.bind(sink="console")

    async def handle(self, alert: Alert) -> None:
        log = self.logger.warning if alert.priority in (AlertPriority.URGENT, AlertPriority.HIGH) else self.logger.info
        log(
            "alert_triggered",
            alert_id=alert.id,
            type=alert.type.value,
            priority=alert.priority.value,
            product=alert.product_name,
            brand=alert.brand,
            message=alert.message,
            data=alert.data,
        )


class PersistenceAlertSink:
    """Stores alerts as AlertRecord rows in their own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def handle(self, alert: Alert, rule_id: Optional[str] = None) -> None:
        async with self.session_factory() as db:
            db.add(
                AlertRecord(
                    alert_id=alert.id,
                    type=alert.type,
                    priority=alert.priority,
                    product_id=alert.product_id,
                    product_name=alert.product_name,
                    brand=alert.brand,
                    message=alert.message,
                    data=alert.data,
                    retailers=list(alert.retailers),
                    rule_id=rule_id,
                    timestamp=alert.timestamp,
                )
            )
            await db.commit()

    async def fetch_recent(self, limit: int = 50, alert_type: Optional[AlertType] = None) -> List[AlertRecord]:
        """Most recent persisted alerts, newest first."""
        async with self.session_factory() as db:
            stmt = select(AlertRecord).order_by(AlertRecord.timestamp.desc()).limit(limit)
            if alert_type:
                stmt = stmt.where(AlertRecord.type == alert_type)
            result = await db.execute(stmt)
            return list(result.scalars().all())


class WebhookAlertSink:
    """POSTs the alert envelope to a URL. One attempt only."""

    def __init__(self, url: str, timeout: float = settings.ALERT_WEBHOOK_TIMEOUT_SECONDS, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def handle(self, alert: Alert) -> None:
        payload = alert.to_payload()
        if self._client is not None:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            return

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()


# ---------------------------------------------------------------------------
# Alert engine
# ---------------------------------------------------------------------------


class AlertSystem:
    """Evaluates change events against rules and dispatches retained alerts."""

    def __init__(
        self,
        rules: Optional[List[AlertRule]] = None,
        console_sink: Optional[AlertSink] = None,
        persistence_sink: Optional[PersistenceAlertSink] = None,
        max_alerts: int = MAX_RETAINED_ALERTS,
        webhook_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the alert engine.

        Args:
            rules: Active rules, defaults to default_rules(ALERT_WEBHOOK_URL)
            console_sink: Sink for log_to_console actions
            persistence_sink: Sink for save_to_database actions; skipped when None
            max_alerts: Ring buffer size
            webhook_client: Shared httpx client for webhook actions
        """
        self.rules: List[AlertRule] = list(rules) if rules is not None else default_rules(settings.ALERT_WEBHOOK_URL)
        self.console_sink = console_sink or ConsoleAlertSink()
        self.persistence_sink = persistence_sink
        self.alerts: Deque[Alert] = deque(maxlen=max_alerts)
        self._subscribers: List[AlertSink] = []
        self._webhook_sinks: Dict[str, WebhookAlertSink] = {}
        self._webhook_client = webhook_client
        self._counter = itertools.count(1)
        self.logger = logger.bind(service="alert_system")

    # Rules and observers

    def add_rule(self, rule: AlertRule) -> None:
        """Add a rule, replacing any rule with the same id."""
        for index, existing in enumerate(self.rules):
            if existing.id == rule.id:
                self.rules[index] = rule
                return
        self.rules.append(rule)

    def remove_rule(self, rule_id: str) -> None:
        self.rules = [rule for rule in self.rules if rule.id != rule_id]

    def subscribe(self, sink: AlertSink) -> None:
        """Register an observer called once for every retained alert."""
        self._subscribers.append(sink)

    # Priority computation

    def stock_change_priority(self, product: CatalogProduct, new_availability: Availability) -> AlertPriority:
        if product.priority == PriorityTier.LIMITED_RELEASE and new_availability == Availability.IN_STOCK:
            return AlertPriority.URGENT
        if product.priority == PriorityTier.POPULAR and new_availability == Availability.OUT_OF_STOCK:
            return AlertPriority.HIGH
        if product.popularity_score > 20:
            return AlertPriority.MEDIUM
        return AlertPriority.LOW

    def price_change_priority(self, product: CatalogProduct, change_percent: float) -> AlertPriority:
        if product.priority == PriorityTier.LIMITED_RELEASE and change_percent < -15:
            return AlertPriority.URGENT
        if product.popularity_score > 20 and change_percent < -20:
            return AlertPriority.HIGH
        if abs(change_percent) > 10:
            return AlertPriority.MEDIUM
        return AlertPriority.LOW

    # Mutation entry points

    async def check_stock_change(
        self,
        product: CatalogProduct,
        old_availability: Availability,
        new_availability: Availability,
    ) -> Optional[Alert]:
        """Report an availability transition; adds a restock follow-up when back in stock.

        Returns:
            The stock-change alert if retained, else None
        """
        if old_availability == new_availability:
            return None

        alert = self._build(
            "stock",
            AlertType.STOCK_CHANGE,
            product,
            message=f"Stock changed from {old_availability.value} to {new_availability.value}",
            priority=self.stock_change_priority(product, new_availability),
            data={
                "old_availability": old_availability.value,
                "new_availability": new_availability.value,
                **self._classification_data(product),
            },
        )
        retained = await self._process(alert)

        if new_availability == Availability.IN_STOCK and old_availability in (
            Availability.OUT_OF_STOCK,
            Availability.DISCONTINUED,
        ):
            await self.check_restock(product)

        return retained

    async def check_restock(self, product: CatalogProduct) -> Optional[Alert]:
        priority = AlertPriority.URGENT if product.priority == PriorityTier.LIMITED_RELEASE else AlertPriority.HIGH
        alert = self._build(
            "restock",
            AlertType.RESTOCK,
            product,
            message=f"{product.name} is back in stock!",
            priority=priority,
            data=self._classification_data(product),
        )
        return await self._process(alert)

    async def check_price_change(
        self,
        product: CatalogProduct,
        old_price: float,
        new_price: float,
        retailer_name: str,
    ) -> Optional[Alert]:
        """Report a price move at one retailer.

        Moves under 5% are ignored. Drops are typed price_drop; increases
        are typed stock_change.
        """
        old_price = float(old_price)
        new_price = float(new_price)
        if old_price == new_price or old_price <= 0:
            return None

        change_percent = (new_price - old_price) / old_price * 100
        if abs(change_percent) < MIN_PRICE_CHANGE_PERCENT:
            return None

        direction = "dropped" if change_percent < 0 else "increased"
        alert = self._build(
            "price",
            AlertType.PRICE_DROP if change_percent < 0 else AlertType.STOCK_CHANGE,
            product,
            message=f"Price {direction} by {abs(change_percent):.1f}% on {retailer_name}",
            priority=self.price_change_priority(product, change_percent),
            data={
                "old_price": old_price,
                "new_price": new_price,
                "price_change": round(change_percent, 2),
                "retailer_name": retailer_name,
                "popularity_score": product.popularity_score,
            },
            retailers=(retailer_name,),
        )
        return await self._process(alert)

    async def check_new_product(self, product: CatalogProduct) -> Optional[Alert]:
        is_limited = product.priority == PriorityTier.LIMITED_RELEASE or product.release_type != ReleaseType.REGULAR
        first_price = float(product.listings[0].current_price) if product.listings else None
        alert = self._build(
            "new",
            AlertType.LIMITED_RELEASE if is_limited else AlertType.NEW_PRODUCT,
            product,
            message=f"New {'limited release' if is_limited else 'product'} detected: {product.name}",
            priority=AlertPriority.URGENT if is_limited else AlertPriority.MEDIUM,
            data={**self._classification_data(product), "price": first_price},
        )
        return await self._process(alert)

    # Queries

    def get_alerts(self, limit: int = 50, alert_type: Optional[AlertType] = None) -> List[Alert]:
        """Retained alerts, newest first."""
        alerts = [alert for alert in self.alerts if alert_type is None or alert.type == alert_type]
        alerts.sort(key=lambda alert: alert.timestamp, reverse=True)
        return alerts[:limit]

    def get_alert_stats(self, now: Optional[datetime] = None) -> dict:
        now = now or utcnow()
        day_ago = now - timedelta(hours=24)
        stats = {"total": len(self.alerts), "by_type": {}, "by_priority": {}, "last_24h": 0}
        for alert in self.alerts:
            stats["by_type"][alert.type.value] = stats["by_type"].get(alert.type.value, 0) + 1
            stats["by_priority"][alert.priority.value] = stats["by_priority"].get(alert.priority.value, 0) + 1
            if alert.timestamp > day_ago:
                stats["last_24h"] += 1
        return stats

    # Internals

    def _build(
        self,
        prefix: str,
        alert_type: AlertType,
        product: CatalogProduct,
        *,
        message: str,
        priority: AlertPriority,
        data: dict,
        retailers: Optional[Tuple[str, ...]] = None,
    ) -> Alert:
        alert_id = f"{prefix}_{next(self._counter)}_{int(time.time() * 1000)}"
        if retailers is None:
            retailers = tuple(str(listing.retailer_id) for listing in product.listings)
        return Alert(
            id=alert_id,
            type=alert_type,
            product_id=str(product.id),
            product_name=product.name,
            brand=product.brand,
            message=message,
            priority=priority,
            data=data,
            retailers=retailers,
        )

    @staticmethod
    def _classification_data(product: CatalogProduct) -> dict:
        return {
            "priority": PriorityTier(product.priority).value,
            "release_type": ReleaseType(product.release_type).value,
            "popularity_score": product.popularity_score,
        }

    async def _process(self, alert: Alert) -> Optional[Alert]:
        matching = [rule for rule in self.rules if rule.matches(alert)]
        if not matching:
            self.logger.debug("alert_discarded", alert_id=alert.id, type=alert.type.value)
            return None

        self.alerts.append(alert)

        for rule in matching:
            await self._execute_actions(alert, rule)

        for sink in list(self._subscribers):
            await self._deliver(sink, alert)

        return alert

    async def _execute_actions(self, alert: Alert, rule: AlertRule) -> None:
        if rule.log_to_console:
            await self._deliver(self.console_sink, alert, rule_id=rule.id)

        if rule.save_to_database and self.persistence_sink is not None:
            try:
                await self.persistence_sink.handle(alert, rule_id=rule.id)
            except Exception as e:
                self.logger.error("alert_persist_failed", alert_id=alert.id, rule_id=rule.id, error=str(e))

        if rule.webhook_url:
            sink = self._webhook_sinks.get(rule.webhook_url)
            if sink is None:
                sink = WebhookAlertSink(rule.webhook_url, client=self._webhook_client)
                self._webhook_sinks[rule.webhook_url] = sink
            await self._deliver(sink, alert, rule_id=rule.id)

    async def _deliver(self, sink: AlertSink, alert: Alert, rule_id: Optional[str] = None) -> None:
        try:
            await sink.handle(alert)
        except Exception as e:
            self.logger.error(
                "alert_delivery_failed",
                sink=type(sink).__name__,
                alert_id=alert.id,
                rule_id=rule_id,
                error=str(e),
            )
