"""Tests for rule evaluation, retention and alert delivery."""

import json
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from seek.core.timeutils import utcnow
from seek.models.enums import AlertPriority, AlertType, Availability, PriorityTier, ReleaseType
from seek.models.listing import RetailerListing
from seek.models.product import CatalogProduct
from seek.services.alert_system import Alert, AlertRule, AlertSystem, PersistenceAlertSink

WEBHOOK_URL = "https://hooks.example.com/seek"


def make_product(**kwargs) -> CatalogProduct:
    params = dict(
        id=uuid.uuid4(),
        name="Esoterica Tobacco Penzance",
        match_key="esoterica tobacco penzance",
        brand="Esoterica",
        priority=PriorityTier.LIMITED_RELEASE,
        release_type=ReleaseType.LIMITED,
        popularity_score=35,
        listings=[
            RetailerListing(
                retailer_id=uuid.uuid4(),
                product_url="https://www.smokingpipes.com/tobacco/penzance",
                current_price=Decimal("18.95"),
                availability=Availability.IN_STOCK,
                last_scraped=utcnow(),
            )
        ],
    )
    params.update(kwargs)
    return CatalogProduct(**params)


def make_alert(alert_type=AlertType.STOCK_CHANGE, **data) -> Alert:
    return Alert(
        id="test_1",
        type=alert_type,
        product_id="p1",
        product_name="Christmas Cheer",
        brand="McClelland",
        message="test",
        priority=AlertPriority.LOW,
        data=data,
    )


class TestStockAlerts:
    """Tests for stock changes and the restock follow-up."""

    async def test_esoterica_restock_is_urgent(self, alert_system, console_sink):
        product = make_product()

        result = await alert_system.check_stock_change(product, Availability.OUT_OF_STOCK, Availability.IN_STOCK)

        # The plain stock change matches no default rule; the restock does
        assert result is None
        alerts = alert_system.get_alerts()
        assert len(alerts) == 1
        assert alerts[0].type == AlertType.RESTOCK
        assert alerts[0].priority == AlertPriority.URGENT
        assert alerts[0].message == "Esoterica Tobacco Penzance is back in stock!"
        console_sink.handle.assert_awaited_once()

    async def test_restock_of_other_brand_is_discarded(self, alert_system):
        product = make_product(name="Irish Flake", brand="Peterson", priority=PriorityTier.POPULAR)

        await alert_system.check_stock_change(product, Availability.OUT_OF_STOCK, Availability.IN_STOCK)

        assert alert_system.get_alerts() == []

    async def test_same_availability_is_no_change(self, alert_system):
        product = make_product()
        assert await alert_system.check_stock_change(product, Availability.IN_STOCK, Availability.IN_STOCK) is None

    def test_stock_change_priority(self, alert_system):
        assert alert_system.stock_change_priority(make_product(), Availability.IN_STOCK) == AlertPriority.URGENT
        popular = make_product(priority=PriorityTier.POPULAR, popularity_score=10)
        assert alert_system.stock_change_priority(popular, Availability.OUT_OF_STOCK) == AlertPriority.HIGH
        standard = make_product(priority=PriorityTier.STANDARD, popularity_score=25)
        assert alert_system.stock_change_priority(standard, Availability.LIMITED) == AlertPriority.MEDIUM
        standard.popularity_score = 5
        assert alert_system.stock_change_priority(standard, Availability.LIMITED) == AlertPriority.LOW


class TestPriceAlerts:
    """Tests for check_price_change."""

    async def test_significant_drop(self, alert_system):
        product = make_product(popularity_score=55)

        alert = await alert_system.check_price_change(product, 20.0, 15.0, "Smokingpipes")

        assert alert is not None
        assert alert.type == AlertType.PRICE_DROP
        assert alert.priority == AlertPriority.URGENT
        assert alert.data["price_change"] == -25.0
        assert alert.retailers == ("Smokingpipes",)
        assert alert.message == "Price dropped by 25.0% on Smokingpipes"

    async def test_increase_is_typed_stock_change_and_discarded(self, alert_system):
        product = make_product(popularity_score=55)

        assert await alert_system.check_price_change(product, 20.0, 24.0, "Smokingpipes") is None
        assert alert_system.get_alerts() == []

    async def test_small_move_is_noise(self, alert_system, console_sink):
        product = make_product(popularity_score=55)

        assert await alert_system.check_price_change(product, Decimal("20.00"), Decimal("20.50"), "Smokingpipes") is None
        console_sink.handle.assert_not_awaited()

    def test_price_change_priority(self, alert_system):
        popular = make_product(priority=PriorityTier.POPULAR, popularity_score=30)
        assert alert_system.price_change_priority(popular, -25) == AlertPriority.HIGH
        assert alert_system.price_change_priority(popular, 12) == AlertPriority.MEDIUM
        assert alert_system.price_change_priority(popular, -6) == AlertPriority.LOW


class TestNewProductAlerts:
    async def test_popular_limited_release_retained(self, alert_system):
        alert = await alert_system.check_new_product(make_product(popularity_score=55))

        assert alert.type == AlertType.LIMITED_RELEASE
        assert alert.priority == AlertPriority.URGENT
        assert alert.data["price"] == 18.95

    async def test_unpopular_limited_release_discarded(self, alert_system):
        assert await alert_system.check_new_product(make_product(popularity_score=10)) is None

    async def test_ring_evicts_oldest(self, console_sink):
        system = AlertSystem(
            rules=[AlertRule(id="all_new", type=AlertType.NEW_PRODUCT)],
            console_sink=console_sink,
            max_alerts=3,
        )

        for i in range(5):
            product = make_product(
                name=f"House Blend {i}",
                brand="Acme",
                priority=PriorityTier.STANDARD,
                release_type=ReleaseType.REGULAR,
                popularity_score=0,
            )
            await system.check_new_product(product)

        assert [alert.product_name for alert in system.alerts] == ["House Blend 2", "House Blend 3", "House Blend 4"]
        assert len({alert.id for alert in system.alerts}) == 3


class TestRules:
    """Tests for AlertRule matching and rule management."""

    def test_condition_on_absent_value_is_skipped(self):
        rule = AlertRule(id="cheap", type=AlertType.STOCK_CHANGE, max_price=30.0)
        assert rule.matches(make_alert(popularity_score=50))
        assert rule.matches(make_alert(new_price=30.0))
        assert not rule.matches(make_alert(new_price=45.0))

        popular = AlertRule(id="popular", type=AlertType.RESTOCK, min_popularity_score=40)
        assert popular.matches(make_alert(AlertType.RESTOCK))
        assert not popular.matches(make_alert(AlertType.RESTOCK, popularity_score=10))

    def test_brand_and_keywords(self):
        rule = AlertRule(
            id="mcclelland_stock",
            type=AlertType.STOCK_CHANGE,
            brands=("mcclelland",),
            keywords=("christmas",),
        )
        assert rule.matches(make_alert())
        assert not rule.matches(make_alert(alert_type=AlertType.RESTOCK))

    def test_disabled_rule_never_matches(self):
        assert not AlertRule(id="off", type=AlertType.STOCK_CHANGE, enabled=False).matches(make_alert())

    def test_add_replaces_and_remove(self, alert_system):
        count = len(alert_system.rules)

        alert_system.add_rule(AlertRule(id="limited_release", type=AlertType.LIMITED_RELEASE, min_popularity_score=90))
        assert len(alert_system.rules) == count
        assert next(r for r in alert_system.rules if r.id == "limited_release").min_popularity_score == 90

        alert_system.add_rule(AlertRule(id="extra", type=AlertType.NEW_PRODUCT))
        assert len(alert_system.rules) == count + 1

        alert_system.remove_rule("extra")
        assert all(rule.id != "extra" for rule in alert_system.rules)


class TestDelivery:
    """Tests for subscribers, webhooks and persistence."""

    async def test_failing_subscriber_is_tolerated(self, alert_system):
        broken = MagicMock()
        broken.handle = AsyncMock(side_effect=RuntimeError("sink down"))
        healthy = MagicMock()
        healthy.handle = AsyncMock()
        alert_system.subscribe(broken)
        alert_system.subscribe(healthy)

        alert = await alert_system.check_restock(make_product())

        assert alert is not None
        healthy.handle.assert_awaited_once_with(alert)

    async def test_webhook_payload(self, console_sink):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            system = AlertSystem(
                rules=[AlertRule(id="restocks", type=AlertType.RESTOCK, webhook_url=WEBHOOK_URL)],
                console_sink=console_sink,
                webhook_client=client,
            )
            alert = await system.check_restock(make_product())

        assert len(requests) == 1
        assert str(requests[0].url) == WEBHOOK_URL
        payload = json.loads(requests[0].content)
        assert set(payload) == {"alert_id", "type", "product_name", "brand", "message", "priority", "timestamp", "data"}
        assert payload["alert_id"] == alert.id
        assert payload["type"] == "restock"
        assert payload["priority"] == "urgent"

    async def test_webhook_failure_is_not_retried(self, console_sink):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            system = AlertSystem(
                rules=[AlertRule(id="restocks", type=AlertType.RESTOCK, webhook_url=WEBHOOK_URL)],
                console_sink=console_sink,
                webhook_client=client,
            )
            alert = await system.check_restock(make_product())

        assert alert is not None
        assert len(calls) == 1
        assert system.get_alerts() == [alert]

    async def test_persistence_sink(self, session_factory, console_sink):
        sink = PersistenceAlertSink(session_factory)
        system = AlertSystem(console_sink=console_sink, persistence_sink=sink)

        await system.check_restock(make_product())
        await system.check_new_product(make_product(popularity_score=55))

        records = await sink.fetch_recent()
        assert len(records) == 2

        restocks = await sink.fetch_recent(alert_type=AlertType.RESTOCK)
        assert len(restocks) == 1
        assert restocks[0].rule_id == "esoterica_restock"
        assert restocks[0].brand == "Esoterica"

    async def test_alert_stats(self, alert_system):
        await alert_system.check_restock(make_product())
        await alert_system.check_new_product(make_product(popularity_score=55))

        stats = alert_system.get_alert_stats()
        assert stats["total"] == 2
        assert stats["by_type"] == {"restock": 1, "limited_release": 1}
        assert stats["by_priority"] == {"urgent": 2}
        assert stats["last_24h"] == 2

        assert alert_system.get_alert_stats(now=utcnow() + timedelta(days=2))["last_24h"] == 0

    async def test_get_alerts_filters_by_type(self, alert_system):
        await alert_system.check_restock(make_product())
        await alert_system.check_new_product(make_product(popularity_score=55))

        restocks = alert_system.get_alerts(alert_type=AlertType.RESTOCK)
        assert [alert.type for alert in restocks] == [AlertType.RESTOCK]
        assert len(alert_system.get_alerts(limit=1)) == 1
