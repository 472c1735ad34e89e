"""Shared fixtures: in-memory store, recording SMS gateway, API client."""

import os

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

import pytest
from fastapi.testclient import TestClient

from drugwatch.core.firebase_auth import FirebaseUser, require_firebase_auth
from drugwatch.dependencies import get_gateway, get_store
from drugwatch.main import app
from drugwatch.models.inspection import BoxStatus
from drugwatch.services.lifecycle import ImpoundmentLifecycle
from drugwatch.services.outbox import NotificationOutbox
from drugwatch.services.record_store import InMemoryRecordStore
from drugwatch.services.sms_gateway import SmsDeliveryResult, SmsNotifier

DAY_MS = 24 * 60 * 60 * 1000
NOW_MS = 1_717_200_000_000  # 2024-06-01T00:00:00Z


class FakeGateway:
    """Records every send; answers with ``status`` or raises ``error``."""

    def __init__(self, status: int = 200, error: Exception | None = None, configured: bool = True):
        self.status = status
        self.error = error
        self.configured = configured
        self.sent: list[tuple[str, str]] = []

    async def send(self, recipients: str, message: str) -> SmsDeliveryResult:
        if self.error is not None:
            raise self.error
        self.sent.append((recipients, message))
        return SmsDeliveryResult(ok=200 <= self.status < 300, status=self.status, data={"status": "queued"})


def seed_record(
    store: InMemoryRecordStore,
    record_id: str = "rec-1",
    boxes=5,
    status: BoxStatus | None = BoxStatus.NOT_IN_STORE,
    phones: str = "0701234567",
    created_at: int = NOW_MS,
    serial: str = "SN-0042",
    facility: str = "Kisenyi Drugshop",
    **impoundment,
) -> str:
    data = {
        "meta": {
            "docNo": "INS-00001",
            "serialNumber": serial,
            "facilityName": facility,
            "drugshopContactPhones": phones,
            "district": "Kampala",
            "createdAt": created_at,
            "createdBy": "inspector@example.org",
        },
        "revision": 0,
    }
    if status is not None:
        data["impoundment"] = {
            "totalBoxes": boxes,
            "boxStatus": status.value,
            "impoundedBy": "Officer Okello",
            "impoundmentDate": created_at,
            **impoundment,
        }
    store.set(f"submissions/{record_id}", data)
    return record_id


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier(gateway):
    return SmsNotifier(gateway, country_code="256")


@pytest.fixture
def outbox(store, notifier):
    return NotificationOutbox(store, notifier)


@pytest.fixture
def lifecycle(store, notifier, outbox):
    return ImpoundmentLifecycle(
        store,
        notifier,
        outbox,
        reminder_after_days=100,
        require_typed_confirmation=False,
    )


@pytest.fixture
def officer():
    return FirebaseUser(uid="uid-1", email="inspector@example.org", email_verified=True, name="Officer Okello")


@pytest.fixture
def client(store, gateway, officer):
    """API client signed in as an active inspector."""
    store.set(f"roles/{officer.uid}", {"role": "inspector", "active": True})
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[require_firebase_auth] = lambda: officer
    yield TestClient(app)
    app.dependency_overrides.clear()
