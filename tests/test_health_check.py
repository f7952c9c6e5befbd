"""
Unit tests for the health check endpoints - liveness and readiness.
"""
import pytest
from unittest.mock import AsyncMock, patch

import httpx

from notifier.core.circuit_breaker import get_sms_circuit_breaker

_SERVICE = "notifier.domain.services.health_service"


def _patch_checks(db: str = "ok", celery: str = "ok"):
    return (
        patch(f"{_SERVICE}._check_db", new_callable=AsyncMock, return_value=db),
        patch(f"{_SERVICE}._check_celery", new_callable=AsyncMock, return_value=celery),
    )


# ============================================================================
# Liveness Probe - GET /health
# ============================================================================


class TestLivenessProbe:

    @pytest.mark.unit
    async def test_liveness_returns_healthy(self, test_client: httpx.AsyncClient) -> None:
        """Liveness probe always returns status=healthy."""
        response = await test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


# ============================================================================
# Readiness Probe - GET /health/ready
# ============================================================================


class TestReadinessProbe:

    @pytest.mark.unit
    async def test_readiness_all_healthy(self, test_client: httpx.AsyncClient) -> None:
        db_patch, celery_patch = _patch_checks()
        with db_patch, celery_patch:
            response = await test_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "db": "ok",
            "celery": "ok",
            "resend_circuit": "ok",
            "twilio_circuit": "ok",
        }

    @pytest.mark.unit
    async def test_readiness_db_down(self, test_client: httpx.AsyncClient) -> None:
        db_patch, celery_patch = _patch_checks(db="error: db_unavailable")
        with db_patch, celery_patch:
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data["db"] == "error: db_unavailable"
        assert data["celery"] == "ok"

    @pytest.mark.unit
    async def test_readiness_celery_broker_down(self, test_client: httpx.AsyncClient) -> None:
        db_patch, celery_patch = _patch_checks(celery="error: celery_unavailable")
        with db_patch, celery_patch:
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        assert "error" in response.json()["celery"]

    @pytest.mark.unit
    async def test_open_provider_circuit_degrades(self, test_client: httpx.AsyncClient) -> None:
        """An open SMS circuit means SMS sends are being deferred."""
        breaker = get_sms_circuit_breaker()
        breaker.trip()

        db_patch, celery_patch = _patch_checks()
        with db_patch, celery_patch:
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["twilio_circuit"] == "error: circuit_open"
        assert data["resend_circuit"] == "ok"


# ============================================================================
# Check functions
# ============================================================================


class TestHealthCheckFunctions:

    @pytest.mark.unit
    async def test_check_db_success(self) -> None:
        mock_session = AsyncMock()
        mock_session.execute = AsyncMock()
        mock_session.__aenter__ = AsyncMock(return_value=mock_session)
        mock_session.__aexit__ = AsyncMock(return_value=None)

        with patch(f"{_SERVICE}.AsyncSessionLocal", return_value=mock_session):
            from notifier.domain.services.health_service import _check_db
            result = await _check_db()

        assert result == "ok"

    @pytest.mark.unit
    async def test_check_db_failure(self) -> None:
        mock_session = AsyncMock()
        mock_session.execute = AsyncMock(side_effect=ConnectionError("refused"))
        mock_session.__aenter__ = AsyncMock(return_value=mock_session)
        mock_session.__aexit__ = AsyncMock(return_value=None)

        with patch(f"{_SERVICE}.AsyncSessionLocal", return_value=mock_session):
            from notifier.domain.services.health_service import _check_db
            result = await _check_db()

        assert result == "error: db_unavailable"

    @pytest.mark.unit
    async def test_check_celery_success(self) -> None:
        mock_client = AsyncMock()
        mock_client.ping = AsyncMock(return_value=True)
        mock_client.aclose = AsyncMock()

        with patch(f"{_SERVICE}.aioredis.from_url", return_value=mock_client):
            from notifier.domain.services.health_service import _check_celery
            result = await _check_celery()

        assert result == "ok"
        mock_client.aclose.assert_awaited_once()

    @pytest.mark.unit
    async def test_check_celery_failure(self) -> None:
        mock_client = AsyncMock()
        mock_client.ping = AsyncMock(side_effect=ConnectionError("refused"))
        mock_client.aclose = AsyncMock()

        with patch(f"{_SERVICE}.aioredis.from_url", return_value=mock_client):
            from notifier.domain.services.health_service import _check_celery
            result = await _check_celery()

        assert result == "error: celery_unavailable"
        mock_client.aclose.assert_awaited_once()
