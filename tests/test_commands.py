"""
Tests for the CommandService command surface.
"""

import pytest

from wagate.commands.service import CommandService
from wagate.errors import AlreadyExistsError, AuthFailureError, NotFoundError, NotReadyError


async def connected_service(service, factory, user_id=7):
    await service.init(user_id)
    await factory.latest.emit_ready()
    return factory.latest


@pytest.mark.asyncio
async def test_init_returns_acknowledgement(service):
    result = await service.init("7")

    assert result["userId"] == 7
    assert "initialization started" in result["message"]


@pytest.mark.asyncio
async def test_init_existing_session_requires_force(service, factory):
    await service.init(7)
    first = factory.latest

    with pytest.raises(AlreadyExistsError):
        await service.init(7)

    await service.init(7, force=True)
    assert factory.latest is not first
    assert "destroy" in first.calls


@pytest.mark.asyncio
async def test_init_force_with_clear_credentials_forces_new_scan(service, factory, store):
    store.session_path(7).mkdir(parents=True)
    await service.init(7)
    first = factory.latest

    await service.init(7, force=True, clear_credentials=True)

    assert "logout" in first.calls
    assert not store.exists(7)


@pytest.mark.asyncio
async def test_get_code_follows_scan_flow(service, factory, notifier):
    with pytest.raises(NotFoundError):
        service.get_code(7)

    await service.init(7)
    assert service.get_code(7) == {"status": "initializing"}

    await factory.latest.emit_qr("ABC123")
    assert service.get_code(7) == {"status": "waiting_scan", "code": "ABC123"}

    await factory.latest.emit_ready(user="15550001")
    assert service.get_code(7) == {"status": "connected"}
    assert notifier.events[-1].event == "connected"
    assert notifier.events[-1].data["phoneNumber"] == "15550001"


@pytest.mark.asyncio
async def test_send_checks_session(service, factory):
    with pytest.raises(NotFoundError):
        await service.send(7, "15550002", "hi")

    await service.init(7)
    with pytest.raises(NotReadyError):
        await service.send(7, "15550002", "hi")

    await factory.latest.emit_ready()
    receipt = await service.send(7, "15550002", "hi")
    assert receipt.message_id == "msg-1"


@pytest.mark.asyncio
async def test_send_bulk_collects_per_item_failures(service, factory, sleeps):
    client = await connected_service(service, factory)
    client.failing_recipients.add("15550003@c.us")

    result = await service.send_bulk(7, [("15550002", "a"), ("15550003", "b"), ("15550004", "c")])

    assert [r.to for r in result.results] == ["15550002", "15550003", "15550004"]
    assert [r.success for r in result.results] == [True, False, True]
    assert result.sent == 2
    assert result.failed == 1
    assert "rejected" in result.results[1].error
    assert len(sleeps) == 2
    assert all(3.0 <= delay <= 8.0 for delay in sleeps)


@pytest.mark.asyncio
async def test_send_bulk_result_shape(service, factory):
    client = await connected_service(service, factory)
    client.failing_recipients.add("15550003@c.us")

    result = await service.send_bulk(7, [("15550002", "a"), ("15550003", "b")])

    assert result.to_dict() == {
        "results": [
            {"to": "15550002", "success": True, "messageId": "msg-1", "timestamp": 1700000001},
            {"to": "15550003", "success": False, "error": "recipient 15550003@c.us rejected"},
        ],
        "sent": 1,
        "failed": 1,
    }


@pytest.mark.asyncio
async def test_send_bulk_requires_connected_session(service, factory, sleeps):
    with pytest.raises(NotFoundError):
        await service.send_bulk(7, [("15550002", "a")])

    await service.init(7)
    with pytest.raises(NotReadyError):
        await service.send_bulk(7, [("15550002", "a")])
    assert factory.latest.sent == []
    assert sleeps == []


@pytest.mark.asyncio
async def test_single_message_bulk_does_not_sleep(service, factory, sleeps):
    await connected_service(service, factory)

    result = await service.send_bulk(7, [("15550002", "a")])

    assert result.sent == 1
    assert sleeps == []


def test_invalid_bulk_delay_range(registry):
    with pytest.raises(ValueError):
        CommandService(registry, bulk_delay_range=(5.0, 1.0))


@pytest.mark.asyncio
async def test_get_contact(service, factory):
    client = await connected_service(service, factory)

    contact = await service.get_contact(7, "15550002")
    assert contact.to_dict() == {"phone": "15550002", "name": "Alice", "isMyContact": True, "isBlocked": False}

    client.contact_error = RuntimeError("unknown")
    with pytest.raises(NotFoundError):
        await service.get_contact(7, "15550002")


@pytest.mark.asyncio
async def test_status_never_fails(service, factory):
    assert service.status(7) == {"userId": 7, "exists": False, "connected": False, "state": "no_session"}
    assert service.status("")["state"] == "no_session"

    await connected_service(service, factory)
    assert service.status("7") == {"userId": 7, "exists": True, "connected": True, "state": "connected"}


@pytest.mark.asyncio
async def test_disconnect_never_fails(service, factory):
    result = await service.disconnect(7)
    assert result["message"] == "WhatsApp disconnected successfully"

    await connected_service(service, factory)
    factory.latest.destroy_error = RuntimeError("destroy failed")
    await service.disconnect(7)

    assert service.status(7)["exists"] is False


@pytest.mark.asyncio
async def test_health_lists_sessions(service):
    await service.init(7)
    await service.init("alice")

    assert service.health() == {
        "status": "ok",
        "service": "whatsapp-web.js",
        "activeSessions": 2,
        "sessions": [7, "alice"],
    }


@pytest.mark.asyncio
async def test_disconnect_with_clear_purges_leftover_credentials(service, store):
    store.session_path(7).mkdir(parents=True)

    result = await service.disconnect(7, clear_credentials=True)

    assert result["message"] == "WhatsApp disconnected successfully"
    assert not store.exists(7)


@pytest.mark.asyncio
async def test_send_after_auth_failure_reports_auth_failure(service, factory):
    await service.init(7)
    await factory.latest.emit_auth_failure("session revoked")

    with pytest.raises(AuthFailureError):
        await service.send(7, "15550002", "hi")
    with pytest.raises(AuthFailureError):
        await service.send_bulk(7, [("15550002", "hi")])
    assert factory.latest.sent == []

    await service.init(7, force=True, clear_credentials=True)
    with pytest.raises(NotReadyError):
        await service.send(7, "15550002", "hi")


@pytest.mark.asyncio
async def test_init_rejects_path_like_user_id(service, factory):
    with pytest.raises(ValueError):
        await service.init("../../etc", clear_credentials=True)
    assert factory.clients == []
