# tests/services/test_dispatch_api.py
"""
Тесты HTTP API диспетчерской: заголовки идентичности, роли, маппинг ошибок.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from src.common.constants import UserRole
from src.common.errors import ConflictError, ErrorCode, InvalidTransitionError, NotFoundError
from src.core.reports.settings import ReportSettings
from src.services.dispatch_api.app import create_app
from src.services.dispatch_api.dependencies import (
    get_dispatch_service,
    get_lifecycle_service,
    get_notifier,
    get_report_settings_service,
    get_shift_service,
)

STAFF = {"X-User-Id": "1", "X-User-Role": "manager"}
DRIVER = {"X-User-Id": "10", "X-User-Role": "driver"}

ASSIGN_BODY = {
    "client_ids": ["client-1"],
    "from_destination_id": "dest-1",
    "to_destination_id": "dest-2",
    "scheduled_time": "2024-01-15T09:00:00Z",
    "driver_id": 10,
}


@pytest.fixture
def dispatch_service() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def lifecycle_service() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def shift_service() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def settings_service() -> AsyncMock:
    service = AsyncMock()
    service.get_settings = AsyncMock(return_value=ReportSettings())
    return service


@pytest.fixture
def client(dispatch_service, lifecycle_service, shift_service, settings_service, mock_notifier):
    app = create_app(with_lifespan=False)
    app.dependency_overrides[get_dispatch_service] = lambda: dispatch_service
    app.dependency_overrides[get_lifecycle_service] = lambda: lifecycle_service
    app.dependency_overrides[get_shift_service] = lambda: shift_service
    app.dependency_overrides[get_report_settings_service] = lambda: settings_service
    app.dependency_overrides[get_notifier] = lambda: mock_notifier
    return TestClient(app, raise_server_exceptions=False)


class TestIdentity:
    """Тесты заголовков идентичности и ролей."""

    def test_missing_headers(self, client) -> None:
        response = client.get("/api/v1/rides")

        assert response.status_code == 422
        assert response.json()["error"]["code"] == ErrorCode.VALIDATION_ERROR

    def test_unknown_role(self, client) -> None:
        response = client.get("/api/v1/rides", headers={"X-User-Id": "1", "X-User-Role": "dispatcher"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert "manager" in body["error"]["details"]["allowed"]

    def test_role_is_case_insensitive(self, client, dispatch_service) -> None:
        dispatch_service.list_rides = AsyncMock(return_value={
            "items": [], "total": 0, "page": 1, "limit": 20, "pages": 0,
        })

        response = client.get("/api/v1/rides", headers={"X-User-Id": "1", "X-User-Role": "MANAGER"})

        assert response.status_code == 200

    def test_driver_cannot_use_staff_routes(self, client, dispatch_service) -> None:
        response = client.post("/api/v1/rides", json=ASSIGN_BODY, headers=DRIVER)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == ErrorCode.FORBIDDEN
        dispatch_service.assign_ride.assert_not_awaited()

    def test_staff_cannot_use_driver_routes(self, client, lifecycle_service) -> None:
        response = client.post("/api/v1/driver/rides/ride-1/accept", headers=STAFF)

        assert response.status_code == 403
        lifecycle_service.accept.assert_not_awaited()


class TestRideRoutes:
    """Тесты роутов поездок."""

    def test_assign_created(self, client, dispatch_service, make_ride) -> None:
        dispatch_service.assign_ride = AsyncMock(return_value=make_ride())

        response = client.post("/api/v1/rides", json=ASSIGN_BODY, headers=STAFF)

        assert response.status_code == 201
        assert response.json()["id"] == "ride-1"
        dto, actor = dispatch_service.assign_ride.await_args.args
        assert dto.driver_id == 10
        assert actor.role == UserRole.MANAGER

    def test_empty_clients_fail_validation(self, client, dispatch_service) -> None:
        response = client.post("/api/v1/rides", json={**ASSIGN_BODY, "client_ids": []}, headers=STAFF)

        assert response.status_code == 422
        dispatch_service.assign_ride.assert_not_awaited()

    def test_conflict_mapping(self, client, dispatch_service) -> None:
        dispatch_service.assign_ride = AsyncMock(
            side_effect=ConflictError("Driver is not free", code=ErrorCode.DRIVER_NOT_FREE),
        )

        response = client.post("/api/v1/rides", json=ASSIGN_BODY, headers=STAFF)

        assert response.status_code == 409
        assert response.json() == {
            "success": False,
            "message": "Driver is not free",
            "error": {"code": ErrorCode.DRIVER_NOT_FREE, "details": None},
        }

    def test_not_found_mapping(self, client, dispatch_service) -> None:
        dispatch_service.get_ride = AsyncMock(side_effect=NotFoundError("Ride"))

        response = client.get("/api/v1/rides/missing", headers=STAFF)

        assert response.status_code == 404
        assert response.json()["message"] == "Ride not found"

    def test_invalid_transition_details(self, client, lifecycle_service) -> None:
        lifecycle_service.start = AsyncMock(
            side_effect=InvalidTransitionError("assigned", "started", "start"),
        )

        response = client.post("/api/v1/driver/rides/ride-1/start", headers=DRIVER)

        assert response.status_code == 400
        details = response.json()["error"]["details"]
        assert details == {"current": "assigned", "target": "started", "event": "start"}

    def test_filters_passed_to_service(self, client, dispatch_service) -> None:
        dispatch_service.list_rides = AsyncMock(return_value={
            "items": [], "total": 0, "page": 2, "limit": 10, "pages": 0,
        })

        response = client.get(
            "/api/v1/rides", params={"status": "scheduled", "page": 2, "limit": 10}, headers=STAFF,
        )

        assert response.status_code == 200
        filters, page, limit = dispatch_service.list_rides.await_args.args
        assert filters.status == "scheduled"
        assert (page, limit) == (2, 10)

    def test_delete_scheduled_no_content(self, client, dispatch_service) -> None:
        response = client.delete("/api/v1/rides/scheduled/ride-1", headers=STAFF)

        assert response.status_code == 204
        dispatch_service.delete_scheduled_booking.assert_awaited_once()

    def test_unexpected_error_is_500(self, client, dispatch_service) -> None:
        dispatch_service.get_ride = AsyncMock(side_effect=ConnectionError("db down"))

        response = client.get("/api/v1/rides/ride-1", headers=STAFF)

        assert response.status_code == 500
        assert response.json()["error"]["code"] == ErrorCode.INTERNAL_SERVER_ERROR


class TestOtherRoutes:
    """Тесты смен, настроек и уведомлений."""

    def test_current_shift_empty(self, client, shift_service) -> None:
        shift_service.get_current = AsyncMock(return_value=None)

        response = client.get("/api/v1/shifts/current", headers=DRIVER)

        assert response.status_code == 200
        assert response.json() is None

    def test_settings_readable_by_driver(self, client) -> None:
        response = client.get("/api/v1/settings/reports", headers=DRIVER)

        assert response.status_code == 200
        assert response.json()["rental_rate_percentage"] == 45.0

    def test_settings_update_admin_only(self, client, settings_service) -> None:
        response = client.patch(
            "/api/v1/settings/reports", json={"gst_rate": 12}, headers=STAFF,
        )

        assert response.status_code == 403
        settings_service.update_settings.assert_not_awaited()

    def test_unread_count(self, client, mock_notifier) -> None:
        mock_notifier.unread_count = AsyncMock(return_value=3)

        response = client.get("/api/v1/notifications/unread-count", headers=DRIVER)

        assert response.json() == {"unread": 3}
        mock_notifier.unread_count.assert_awaited_once_with(10)


class TestPushSocket:
    """Тесты WebSocket-канала."""

    def test_rejects_missing_identity(self, client) -> None:
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/notifications"):
                pass

    def test_rejects_unknown_role(self, client) -> None:
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/notifications?user_id=10&role=guest"):
                pass
