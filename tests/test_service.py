"""Tests for WebhookService."""

from datetime import timedelta

import pytest

from deskhook.config import Settings
from deskhook.exceptions import NotFoundError, ValidationError
from deskhook.models import RetryPolicy, WebhookEventType
from deskhook.service import WebhookService, generate_secret
from helpers import T0, RecordingHandler


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler(200)


@pytest.fixture
def service(storage, dispatcher_factory, handler) -> WebhookService:
    return WebhookService(
        storage=storage,
        dispatcher=dispatcher_factory(handler),
        settings=Settings(env="test", sweep_enabled=False, delivery_retention_days=30),
    )


async def create(service: WebhookService, **overrides):
    values = {
        "name": "CRM sync",
        "url": "https://hooks.example.com/helpdesk",
        "events": ["ticket.created", "ticket.resolved"],
        "created_by": "admin_1",
    }
    values.update(overrides)
    return await service.create_webhook(**values)


def test_generate_secret():
    secret = generate_secret()
    assert len(secret) == 64
    int(secret, 16)
    assert generate_secret() != secret


class TestRegistry:
    async def test_create_generates_secret(self, service):
        sub = await create(service)

        assert len(sub.secret) == 64
        assert sub.events == [WebhookEventType.TICKET_CREATED, WebhookEventType.TICKET_RESOLVED]
        stored = await service.get_webhook(sub.id)
        assert stored.secret == sub.secret

    async def test_create_keeps_given_secret(self, service):
        sub = await create(service, secret="my-own-secret-value")
        assert sub.secret == "my-own-secret-value"

    @pytest.mark.parametrize(
        "overrides,field",
        [
            ({"url": "not a url"}, "url"),
            ({"events": []}, "events"),
            ({"events": ["ticket.exploded"]}, "events.0"),
            ({"secret": "short"}, "secret"),
            ({"timeout_ms": 10}, "timeout_ms"),
            ({"retry_policy": {"max_retries": 20}}, "retry_policy.max_retries"),
        ],
    )
    async def test_create_rejects_invalid(self, service, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            await create(service, **overrides)
        assert exc_info.value.field == field
        assert await service.list_webhooks() == []

    async def test_get_scoped_to_owner(self, service):
        sub = await create(service)

        assert (await service.get_webhook(sub.id, created_by="admin_1")).id == sub.id
        with pytest.raises(NotFoundError):
            await service.get_webhook(sub.id, created_by="admin_2")
        with pytest.raises(NotFoundError):
            await service.get_webhook("whk_missing")

    async def test_list_and_find_active(self, service):
        first = await create(service, name="first")
        await create(service, name="second", created_by="admin_2", is_active=False)

        mine = await service.list_webhooks(created_by="admin_1")
        assert [s.id for s in mine] == [first.id]
        assert len(await service.list_webhooks(event="ticket.resolved")) == 2
        assert [s.id for s in await service.find_active("ticket.created")] == [first.id]

    async def test_unknown_event_filter(self, service):
        with pytest.raises(ValidationError):
            await service.list_webhooks(event="ticket.exploded")

    async def test_update_partial_retry_policy(self, service):
        sub = await create(service, retry_policy=RetryPolicy(max_retries=5, retry_delay_ms=2000))

        updated = await service.update_webhook(
            sub.id, name="Renamed", retry_policy={"backoff_multiplier": 3.0}
        )

        assert updated.name == "Renamed"
        assert updated.retry_policy == RetryPolicy(
            max_retries=5, retry_delay_ms=2000, backoff_multiplier=3.0
        )
        assert updated.secret == sub.secret
        assert updated.updated_at >= sub.updated_at
        assert (await service.get_webhook(sub.id)).name == "Renamed"

    async def test_update_rejects_unknown_or_immutable_fields(self, service):
        sub = await create(service)
        with pytest.raises(ValidationError) as exc_info:
            await service.update_webhook(sub.id, id="whk_other")
        assert exc_info.value.field == "id"
        with pytest.raises(ValidationError):
            await service.update_webhook(sub.id, total_deliveries=10)

    async def test_update_revalidates(self, service):
        sub = await create(service)
        with pytest.raises(ValidationError):
            await service.update_webhook(sub.id, url="ftp://")
        assert str((await service.get_webhook(sub.id)).url) == str(sub.url)

    async def test_update_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.update_webhook("whk_missing", name="x")

    async def test_delete(self, service):
        sub = await create(service)
        [delivery_id] = await service.notify("ticket.created", {"ticket_id": "T-1"})

        await service.delete_webhook(sub.id)

        with pytest.raises(NotFoundError):
            await service.get_webhook(sub.id)
        with pytest.raises(NotFoundError):
            await service.get_delivery(delivery_id)
        with pytest.raises(NotFoundError):
            await service.delete_webhook(sub.id)


class TestDelivery:
    async def test_notify(self, service, handler):
        sub = await create(service)

        delivery_ids = await service.notify("ticket.resolved", {"ticket_id": "T-1"})

        assert len(delivery_ids) == 1
        record = await service.get_delivery(delivery_ids[0])
        assert record.webhook_id == sub.id
        assert record.status == "success"
        assert handler.calls == 1

    async def test_notify_unknown_event(self, service):
        with pytest.raises(ValidationError) as exc_info:
            await service.notify("ticket.exploded", {})
        assert exc_info.value.field == "event"

    async def test_test_webhook(self, service):
        sub = await create(service)

        result = await service.test_webhook(sub.id)

        assert result.success
        assert (await service.get_webhook(sub.id)).total_deliveries == 1
        assert await service.list_deliveries(sub.id) == []

    async def test_test_webhook_owner_scoped(self, service):
        sub = await create(service)
        with pytest.raises(NotFoundError):
            await service.test_webhook(sub.id, created_by="admin_2")


class TestHistory:
    async def test_list_deliveries_by_status(self, service, storage, dispatcher_factory, clock):
        sub = await create(service)
        failing = WebhookService(
            storage=storage,
            dispatcher=dispatcher_factory(RecordingHandler(500)),
            settings=service.settings,
        )
        await service.notify("ticket.created", {})
        clock.advance(seconds=1)
        await failing.notify("ticket.created", {})

        assert len(await service.list_deliveries(sub.id)) == 2
        [retrying] = await service.list_deliveries(sub.id, status="retrying")
        assert retrying.created_at == T0 + timedelta(seconds=1)

    async def test_stats(self, service):
        sub = await create(service)
        await service.notify("ticket.created", {})

        stats = await service.get_delivery_stats(sub.id, days=7)

        assert stats.total == 1
        assert stats.by_status["success"].count == 1

    async def test_stats_rejects_bad_window(self, service):
        with pytest.raises(ValidationError):
            await service.get_delivery_stats("whk_1", days=0)

    async def test_purge_expired(self, service):
        sub = await create(service)
        await service.notify("ticket.created", {})

        assert await service.purge_expired(now=T0 + timedelta(days=29)) == 0
        assert await service.purge_expired(now=T0 + timedelta(days=31)) == 1
        assert await service.list_deliveries(sub.id) == []
        # the ledger is kept, so counters survive the purge
        assert (await service.get_webhook(sub.id)).total_deliveries == 1


class TestSweeping:
    async def test_sweep_task_summary(self, storage, dispatcher_factory, clock):
        service = WebhookService(
            storage=storage,
            dispatcher=dispatcher_factory(RecordingHandler(500, 200)),
            settings=Settings(env="test"),
        )
        await create(service)
        await service.notify("ticket.created", {})

        assert await service.sweep_task(clock()) is None
        summary = await service.sweep_task(clock.advance(seconds=1))
        assert summary == "processed=1 succeeded=1 retrying=0 failed=0 skipped=0 errors=0"

    async def test_purge_task_summary(self, service):
        await create(service)
        await service.notify("ticket.created", {})

        assert await service.purge_task(T0) is None
        assert await service.purge_task(T0 + timedelta(days=31)) == "deleted=1"

    def test_build_sweeper(self, service):
        sweeper = service.build_sweeper()
        assert [t.name for t in sweeper.tasks] == ["retry_sweep", "retention_purge"]
        assert sweeper.interval_seconds == service.settings.sweep_interval_seconds

    async def test_start_and_close(self, service):
        assert not service.sweeper_running

        sweeper = await service.start_sweeper()
        assert service.sweeper_running
        assert await service.start_sweeper() is sweeper

        await service.close()
        assert not service.sweeper_running
