"""
Tests for the fire-and-forget NotificationDispatcher.
"""

import json

import httpx

from vendorbridge.services.notifications import NotificationDispatcher, OrderNotification

NOTICE = OrderNotification(
    order_id="3f1c", owner_ref="user-1", category="phone", status="expired", refunded_minor=500
)


class TestNotificationDispatcher:
    async def test_posts_json(self, mock_http):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        dispatcher = NotificationDispatcher(mock_http(handler), "https://hooks.example.com/orders")

        dispatcher.notify(NOTICE)
        await dispatcher.drain()

        assert len(seen) == 1
        assert str(seen[0].url) == "https://hooks.example.com/orders"
        assert json.loads(seen[0].content) == {
            "order_id": "3f1c",
            "owner_ref": "user-1",
            "category": "phone",
            "status": "expired",
            "refunded_minor": 500,
        }

    async def test_without_url_only_logs(self, mock_http):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        dispatcher = NotificationDispatcher(mock_http(handler), "")

        dispatcher.notify(NOTICE)
        await dispatcher.drain()

        assert seen == []

    async def test_delivery_failure_is_contained(self, mock_http):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        dispatcher = NotificationDispatcher(mock_http(handler), "https://hooks.example.com/orders")

        dispatcher.notify(NOTICE)
        await dispatcher.drain()

        assert not dispatcher._tasks

    async def test_drain_with_nothing_in_flight(self):
        await NotificationDispatcher().drain()
