"""Webhook ingress: signatures, parsing, dedupe and reconciliation outcomes."""

import asyncio
import json

import fakeredis
import pytest
import redis

from conftest import seed_order
from sippay.common.config import settings
from sippay.common.errors import MalformedEventError, UnauthorizedError
from sippay.services.webhooks.models import (
    FulfillmentStateChanged,
    IgnoredEvent,
    OrderCreated,
    OrderStateChanged,
)
from sippay.services.webhooks.service import (
    WebhookService,
    compute_signature,
    parse_event,
    verify_signature,
)


URL = settings.square_webhook_url
KEY = settings.square_webhook_signature_key


def fulfillment_event(order_id: str, new_state: str, event_id: str = "evt-f") -> bytes:
    return json.dumps(
        {
            "merchant_id": "M1",
            "type": "order.fulfillment.updated",
            "event_id": event_id,
            "data": {
                "type": "order_fulfillment_updated",
                "id": order_id,
                "object": {
                    "order_fulfillment_updated": {
                        "order_id": order_id,
                        "state": "OPEN",
                        "fulfillment_update": [
                            {"fulfillment_uid": "F1", "old_state": "PROPOSED", "new_state": "RESERVED"},
                            {"fulfillment_uid": "F1", "old_state": "RESERVED", "new_state": new_state},
                        ],
                    }
                },
            },
        }
    ).encode()


def order_event(order_id: str, state: str, event_id: str = "evt-o") -> bytes:
    return json.dumps(
        {
            "merchant_id": "M1",
            "type": "order.updated",
            "event_id": event_id,
            "data": {"type": "order_updated", "id": order_id, "object": {"order_updated": {"order_id": order_id, "state": state}}},
        }
    ).encode()


def deliver(service: WebhookService, body: bytes) -> str:
    async def scenario():
        outcome = await service.handle(body, compute_signature(body, KEY, URL), URL)
        await service.engine.drain_notifications()
        return outcome

    return asyncio.run(scenario())


@pytest.fixture
def webhooks(repository, engine):
    return WebhookService(repository, engine, redis_client=fakeredis.FakeRedis(server=fakeredis.FakeServer()))


def test_signature_round_trip():
    body = b'{"type":"order.updated"}'
    signature = compute_signature(body, "secret", URL)

    assert verify_signature(body, signature, "secret", URL)
    assert not verify_signature(body + b" ", signature, "secret", URL)
    assert not verify_signature(body, signature, "other-secret", URL)
    assert not verify_signature(body, signature, "secret", URL + "/other")
    assert not verify_signature(body, None, "secret", URL)
    assert not verify_signature(body, signature, None, URL)


def test_bad_or_missing_signature_is_unauthorized(webhooks):
    body = order_event("SQ-ORDER-1", "OPEN")

    with pytest.raises(UnauthorizedError):
        asyncio.run(webhooks.handle(body, None, URL))
    with pytest.raises(UnauthorizedError):
        asyncio.run(webhooks.handle(body, "bm90LXRoZS1zaWduYXR1cmU=", URL))


def test_unset_signature_key_rejects_everything(repository, engine):
    config = settings.model_copy(update={"square_webhook_signature_key": None})
    service = WebhookService(repository, engine, config=config)
    body = order_event("SQ-ORDER-1", "OPEN")

    with pytest.raises(UnauthorizedError):
        asyncio.run(service.handle(body, compute_signature(body, KEY, URL), URL))


def test_parse_tagged_events():
    assert parse_event(order_event("SQ-1", "COMPLETED")) == OrderStateChanged(
        event_id="evt-o", order_id="SQ-1", state="COMPLETED"
    )
    fulfillment = parse_event(fulfillment_event("SQ-1", "PREPARED"))
    assert isinstance(fulfillment, FulfillmentStateChanged)
    assert fulfillment.new_state == "PREPARED"
    assert fulfillment.old_state == "RESERVED"

    created = parse_event(
        json.dumps({"type": "order.created", "data": {"object": {"order_created": {"order_id": "SQ-1", "state": "OPEN"}}}}).encode()
    )
    assert isinstance(created, OrderCreated)
    assert isinstance(parse_event(b'{"type": "payment.updated", "data": {}}'), IgnoredEvent)


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[]",
        b'{"data": {}}',
        b'{"type": "order.updated", "data": {"object": {"order_updated": {"state": "OPEN"}}}}',
        b'{"type": "order.updated", "data": {"object": {"order_updated": {"order_id": 12345, "state": "OPEN"}}}}',
        b'{"type": "order.updated", "data": {"object": {"order_updated": "not-an-object"}}}',
        b'{"type": "order.updated", "data": {"object": "not-an-object"}}',
        b'{"type": "order.fulfillment.updated", "data": {"object": {"order_fulfillment_updated": {"order_id": "SQ-1", "fulfillment_update": ["garbage"]}}}}',
        b'{"type": "order.fulfillment.updated", "data": {"object": {"order_fulfillment_updated": {"order_id": "SQ-1", "fulfillment_update": 7}}}}',
    ],
)
def test_malformed_envelopes(body):
    with pytest.raises(MalformedEventError):
        parse_event(body)


def test_unknown_order_is_acknowledged_without_writes(webhooks, repository, mocker):
    seed_order(repository, order_id="SQ-ORDER-1")
    cas = mocker.spy(repository, "compare_and_set_status")

    outcome = deliver(webhooks, fulfillment_event("SQ-NOT-OURS", "PREPARED"))

    assert outcome == "unknown_order"
    assert cas.call_count == 0
    assert repository.get("T1").status == "SUBMITTED"


@pytest.mark.parametrize("swap", [False, True])
def test_out_of_order_events_converge_to_ready(webhooks, repository, swap):
    seed_order(repository, order_id="SQ-ORDER-1")
    events = [fulfillment_event("SQ-ORDER-1", "PREPARED"), order_event("SQ-ORDER-1", "OPEN")]
    if swap:
        events.reverse()

    for body in events:
        deliver(webhooks, body)

    assert repository.get("T1").status == "READY"


def test_prepared_fulfillment_marks_ready_and_notifies_once(webhooks, repository, notifier):
    seed_order(repository, order_id="SQ-ORDER-1")

    assert deliver(webhooks, fulfillment_event("SQ-ORDER-1", "PREPARED", event_id="evt-1")) == "applied"
    assert deliver(webhooks, fulfillment_event("SQ-ORDER-1", "PREPARED", event_id="evt-2")) == "no_op"

    assert repository.get("T1").status == "READY"
    assert len(notifier.sent) == 1
    assert notifier.sent[0][1].transaction_id == "T1"


def test_late_fulfilled_event_cannot_reopen_cancelled_order(webhooks, repository):
    seed_order(repository, status="CANCELLED", order_id="SQ-ORDER-1")

    assert deliver(webhooks, fulfillment_event("SQ-ORDER-1", "FULFILLED")) == "no_op"
    assert repository.get("T1").status == "CANCELLED"


def test_replayed_event_id_is_skipped(webhooks, repository, mocker):
    seed_order(repository, order_id="SQ-ORDER-1")
    body = fulfillment_event("SQ-ORDER-1", "RESERVED", event_id="evt-dup")

    assert deliver(webhooks, body) == "applied"
    apply = mocker.spy(webhooks.engine, "apply")
    assert deliver(webhooks, body) == "duplicate"
    assert apply.call_count == 0


def test_dedupe_store_failure_still_processes(repository, engine, mocker):
    broken = mocker.Mock()
    broken.exists.side_effect = redis.ConnectionError("redis down")
    broken.setex.side_effect = redis.ConnectionError("redis down")
    service = WebhookService(repository, engine, redis_client=broken)
    seed_order(repository, order_id="SQ-ORDER-1")

    assert deliver(service, fulfillment_event("SQ-ORDER-1", "RESERVED")) == "applied"
    assert repository.get("T1").status == "IN_PROGRESS"


def test_event_applies_to_every_matching_order(webhooks, repository):
    seed_order(repository, "T1", order_id="SQ-DUP")
    seed_order(repository, "T2", order_id="SQ-DUP")

    deliver(webhooks, fulfillment_event("SQ-DUP", "RESERVED"))

    assert repository.get("T1").status == "IN_PROGRESS"
    assert repository.get("T2").status == "IN_PROGRESS"


def test_order_created_and_unhandled_types_do_not_write(webhooks, repository):
    seed_order(repository, order_id="SQ-ORDER-1")
    created = json.dumps(
        {"type": "order.created", "event_id": "evt-c", "data": {"object": {"order_created": {"order_id": "SQ-ORDER-1", "state": "OPEN"}}}}
    ).encode()
    unhandled = json.dumps({"type": "payment.updated", "event_id": "evt-p", "data": {}}).encode()

    assert deliver(webhooks, created) == "logged"
    assert deliver(webhooks, unhandled) == "ignored"
    assert len(repository.timeline("T1")) == 1


def test_draft_order_state_is_never_written(webhooks, repository):
    seed_order(repository, order_id="SQ-ORDER-1")

    assert deliver(webhooks, order_event("SQ-ORDER-1", "DRAFT")) == "no_op"
    assert repository.get("T1").status == "SUBMITTED"


def test_order_deleted_before_the_write_is_acknowledged_as_unknown(webhooks, repository, mocker):
    seed_order(repository, order_id="SQ-ORDER-1")
    rows = repository.find_by_provider_order_id("SQ-ORDER-1")
    repository.delete("T1")
    mocker.patch.object(repository, "find_by_provider_order_id", return_value=rows)

    assert deliver(webhooks, fulfillment_event("SQ-ORDER-1", "PREPARED")) == "unknown_order"


def test_one_deleted_match_does_not_stop_the_others(webhooks, repository, mocker):
    seed_order(repository, "T1", order_id="SQ-DUP")
    seed_order(repository, "T2", order_id="SQ-DUP")
    rows = repository.find_by_provider_order_id("SQ-DUP")
    repository.delete("T1")
    mocker.patch.object(repository, "find_by_provider_order_id", return_value=rows)

    assert deliver(webhooks, fulfillment_event("SQ-DUP", "RESERVED")) == "applied"
    assert repository.get("T2").status == "IN_PROGRESS"
