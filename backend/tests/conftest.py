"""
Pytest fixtures and configuration for Life Signal tests.

Provides:
- Mock Supabase client for isolated testing
- Recording push/telephony transports
- Test client with the service container swapped in
- Sample record factories
"""
import os

# Settings are instantiated at import time; give them a store to point at
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

import pytest
from datetime import datetime, timezone
from typing import Generator, Dict, Any, List, Optional
from unittest.mock import patch
from uuid import uuid4

from fastapi.testclient import TestClient

from lifesignal.core.config import Settings
from lifesignal.core.container import build_services
from lifesignal.core.database import SupabaseRepository
from lifesignal.main import app
from lifesignal.services.notifications import NotificationDispatcher

from helpers import RecordingPushTransport, RecordingTelephony


# ==========================================
# MOCK SUPABASE RESPONSE & TABLE
# ==========================================

class MockSupabaseResponse:
    """Mock response from Supabase operations."""

    def __init__(self, data: list = None, error: dict = None, count: int = None):
        self.data = data or []
        self.error = error
        self.count = count if count is not None else len(self.data)

    def execute(self):
        return self


class MockSupabaseTable:
    """Mock Supabase table operations (the PostgREST query builder subset we use)."""

    def __init__(self, table_name: str, client: "MockSupabaseClient"):
        self.table_name = table_name
        self.client = client
        self.mock_data = client.mock_data
        self._filters = []
        self._limit = None
        self._update_data = None
        self._pending = None

    def select(self, fields: str = "*", count: str = None):
        return self

    def eq(self, column: str, value: Any):
        self._filters.append(("eq", column, value))
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def insert(self, data: Any):
        """Mock insert operation - applied on execute()."""
        rows = data if isinstance(data, list) else [data]
        self._pending = rows
        return self

    def update(self, data: dict):
        """Mock update operation - returns self for chaining."""
        self._update_data = data
        return self

    def _apply_filters(self, results: list) -> list:
        for op, column, value in self._filters:
            if op == "eq":
                results = [r for r in results if r.get(column) == value]
        return results

    def execute(self):
        """Execute the query and return results."""
        if self.table_name in self.client.failing_tables:
            raise RuntimeError(f"{self.table_name} unavailable")

        table_data = self.mock_data.setdefault(self.table_name, [])

        if self._pending:
            self.client.operations.append((self.table_name, "insert", len(self._pending)))
            results = []
            for row in self._pending:
                new_row = dict(row)
                new_row.setdefault("id", str(uuid4()))
                table_data.append(new_row)
                results.append(new_row)
            return MockSupabaseResponse(results)

        results = self._apply_filters(list(table_data))

        if self._update_data is not None:
            self.client.operations.append((self.table_name, "update", len(results)))
            for result in results:
                result.update(self._update_data)
            return MockSupabaseResponse(results, count=len(results))

        if self._limit:
            results = results[:self._limit]

        # Hand out copies so callers can't mutate the store by accident
        return MockSupabaseResponse([dict(r) for r in results])


class MockSupabaseClient:
    """Mock Supabase client (exposes table() like supabase.Client)."""

    def __init__(self):
        self.mock_data: Dict[str, list] = {
            "users": [],
            "emergency_contacts": [],
            "devices": [],
            "notifications": [],
        }
        self.operations: List[tuple] = []
        self.failing_tables: set = set()

    def table(self, table_name: str) -> MockSupabaseTable:
        return MockSupabaseTable(table_name, self)

    def clear(self):
        """Clear all mock data."""
        for key in self.mock_data:
            self.mock_data[key] = []
        self.operations = []


# ==========================================
# FIXTURES
# ==========================================

NOW = datetime(2025, 4, 14, 8, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Fixed 'current time' for state machine passes."""
    return NOW


@pytest.fixture(scope="function")
def mock_supabase() -> MockSupabaseClient:
    """Function-scoped fresh mock client (clean for each test)."""
    return MockSupabaseClient()


@pytest.fixture(scope="function")
def mock_data(mock_supabase) -> Dict[str, list]:
    """Access to the mock data store for direct manipulation."""
    return mock_supabase.mock_data


@pytest.fixture
def repository(mock_supabase) -> SupabaseRepository:
    return SupabaseRepository(mock_supabase)


@pytest.fixture
def test_settings() -> Settings:
    """Fully configured settings (telephony on, push credentials injected separately)."""
    return Settings(
        supabase_url="http://localhost:54321",
        supabase_anon_key="test-anon-key",
        telnyx_api_key="KEY_TEST",
        telnyx_application_id="conn-123",
        telnyx_from_number="+15550000000",
        firebase_service_account_json=None,
        enable_scheduler=False,
        run_scheduler=False,
    )


@pytest.fixture
def push_transport() -> RecordingPushTransport:
    return RecordingPushTransport()


@pytest.fixture
def telephony() -> RecordingTelephony:
    return RecordingTelephony()


@pytest.fixture
def dispatcher(repository, push_transport, telephony) -> NotificationDispatcher:
    return NotificationDispatcher(
        repository=repository,
        push_transport=push_transport,
        telephony=telephony,
    )


@pytest.fixture
def services(test_settings, repository, push_transport, telephony):
    """Service container wired to the mock store and recording transports."""
    return build_services(
        test_settings,
        repository=repository,
        push_transport=push_transport,
        telephony=telephony,
    )


@pytest.fixture(scope="function")
def client(services) -> Generator[TestClient, None, None]:
    """
    Create test client with the mocked service container.

    Each test gets a fresh mock store with clean data.
    """
    with patch("lifesignal.main.build_services", return_value=services):
        with TestClient(app) as test_client:
            yield test_client


# ==========================================
# SAMPLE DATA FIXTURES
# ==========================================

@pytest.fixture
def make_user(mock_data):
    """Factory that stores and returns a monitored user record."""

    def _create(user_id: Optional[str] = None, **overrides) -> Dict[str, Any]:
        user = {
            "id": user_id or f"user-{uuid4().hex[:8]}",
            "first_name": "Ada",
            "last_name": "Lovelace",
            "phone": "+15551230001",
            "checkin_enabled": True,
            "checkin_interval": 60,
            "last_checkin_at": None,
            "main_notification": {},
            **overrides,
        }
        mock_data["users"].append(user)
        return user

    return _create


@pytest.fixture
def make_contact(mock_data):
    """Factory that stores and returns an emergency contact link."""

    def _create(user_id: str, contact_uid: Optional[str] = None, **overrides) -> Dict[str, Any]:
        link = {
            "id": f"link-{uuid4().hex[:8]}",
            "user_id": user_id,
            "emergency_contact_uid": contact_uid or f"contact-{uuid4().hex[:8]}",
            "phone": "+15559870001",
            "status": "ACTIVE",
            "notification_settings": {},
            "sent_count_in_window": 0,
            "created_at": "2025-01-01T00:00:00+00:00",
            "profile": {},
            **overrides,
        }
        mock_data["emergency_contacts"].append(link)
        return link

    return _create


@pytest.fixture
def make_device(mock_data):
    """Factory that registers an FCM token for a user."""

    def _create(user_id: str, token: Optional[str] = None) -> Dict[str, Any]:
        device = {
            "id": f"device-{uuid4().hex[:8]}",
            "user_id": user_id,
            "fcm_token": token or f"token-{uuid4().hex[:8]}",
        }
        mock_data["devices"].append(device)
        return device

    return _create


# ==========================================
# CLEANUP
# ==========================================

@pytest.fixture(autouse=True)
def cleanup_overrides():
    """Reset dependency overrides after each test."""
    yield
    app.dependency_overrides.clear()


# ==========================================
# MARKERS
# ==========================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (isolated, fast)")
    config.addinivalue_line("markers", "integration: Integration tests (API through TestClient)")
