"""
Unit tests for the worker webhook client.

Tests cover:
- Client initialization and validation
- Request headers (token, request id) and JSON body
- Error mapping for HTTP status codes
- Timeout and connection error handling
- send() reporting failures instead of raising
"""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from mediajobs.integrations.worker.client import (
    DEFAULT_TIMEOUT_SECONDS,
    WorkerWebhookClient,
    verify_webhook_token,
)
from mediajobs.integrations.worker.exceptions import (
    WorkerAuthenticationError,
    WorkerConnectionError,
    WorkerError,
    WorkerRateLimitError,
)
from mediajobs.jobs.retry import ErrorCategory

WEBHOOK_URL = "http://worker.test/webhook/mediajobs"
SECRET = "test-secret-12345"

PAYLOAD = {
    "job_id": "0b6f4c3e-3c55-4f43-9f5b-2c1a2f1d9a77",
    "source_url": "https://www.youtube.com/watch?v=abc123",
    "options": {"format": "mp3"},
    "callback_url": "http://backend:8080/api/v1/worker-callback",
}


@pytest.fixture
def client():
    """Create a test client instance."""
    return WorkerWebhookClient(webhook_url=WEBHOOK_URL, secret=SECRET)


def _response(status_code: int, headers=None) -> MagicMock:
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.headers = headers or {}
    return mock_response


class TestWorkerClientInitialization:
    """Tests for client initialization."""

    def test_requires_webhook_url(self):
        with pytest.raises(ValueError, match="Worker webhook URL is required"):
            WorkerWebhookClient(webhook_url="", secret=SECRET)

    def test_default_headers(self, client):
        assert client._client.headers["X-Webhook-Token"] == SECRET
        assert client._client.headers["Content-Type"] == "application/json"

    def test_default_timeout(self, client):
        assert client._client.timeout.read == DEFAULT_TIMEOUT_SECONDS

    @pytest.mark.asyncio
    async def test_async_context_manager_closes(self):
        async with WorkerWebhookClient(webhook_url=WEBHOOK_URL, secret=SECRET) as client:
            assert not client._client.is_closed
        assert client._client.is_closed


class TestWorkerClientPost:
    """Tests for the raw webhook call."""

    @pytest.mark.asyncio
    async def test_posts_json_with_request_id(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(200)

            status_code = await client._post(PAYLOAD)

            assert status_code == 200
            mock_post.assert_called_once()
            args, kwargs = mock_post.call_args
            assert args[0] == WEBHOOK_URL
            assert json.loads(kwargs["content"]) == PAYLOAD
            assert kwargs["headers"]["X-Request-ID"] == PAYLOAD["job_id"]

    @pytest.mark.asyncio
    async def test_accepts_any_2xx(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(204)

            assert await client._post(PAYLOAD) == 204

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 403])
    async def test_auth_failure(self, client, status_code):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(status_code)

            with pytest.raises(WorkerAuthenticationError) as exc_info:
                await client._post(PAYLOAD)

            assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    async def test_rate_limit_with_retry_after(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(429, headers={"Retry-After": "5"})

            with pytest.raises(WorkerRateLimitError) as exc_info:
                await client._post(PAYLOAD)

            assert exc_info.value.retry_after == 5

    @pytest.mark.asyncio
    async def test_send_reports_retry_after(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(429, headers={"Retry-After": "7"})

            result = await client.send(PAYLOAD)

        assert result.success is False
        assert result.error_category == ErrorCategory.RATE_LIMIT
        assert result.retry_after_seconds == 7

    @pytest.mark.asyncio
    async def test_server_error(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(502)

            with pytest.raises(WorkerError, match="non-2xx status: 502"):
                await client._post(PAYLOAD)

    @pytest.mark.asyncio
    async def test_redirect_is_not_success(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(302)

            with pytest.raises(WorkerError):
                await client._post(PAYLOAD)

    @pytest.mark.asyncio
    async def test_timeout(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = httpx.ReadTimeout("timed out")

            with pytest.raises(WorkerConnectionError) as exc_info:
                await client._post(PAYLOAD)

            assert exc_info.value.timeout is True

    @pytest.mark.asyncio
    async def test_connection_error(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = httpx.ConnectError("connection refused")

            with pytest.raises(WorkerConnectionError) as exc_info:
                await client._post(PAYLOAD)

            assert exc_info.value.timeout is False


class TestWorkerClientSend:
    """Tests for single dispatch attempts."""

    @pytest.mark.asyncio
    async def test_success(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(200)

            result = await client.send(PAYLOAD)

            assert result.success is True
            assert result.status_code == 200
            assert result.error_category is None

    @pytest.mark.asyncio
    async def test_server_error_is_reported(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(503)

            result = await client.send(PAYLOAD)

            assert result.success is False
            assert result.status_code == 503
            assert result.error_category == ErrorCategory.SERVER_ERROR
            assert result.error_message == "Webhook returned non-2xx status: 503"

    @pytest.mark.asyncio
    async def test_timeout_is_reported(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = httpx.ConnectTimeout("timed out")

            result = await client.send(PAYLOAD)

            assert result.success is False
            assert result.status_code is None
            assert result.error_category == ErrorCategory.TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_error_is_reported(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.side_effect = httpx.ConnectError("connection refused")

            result = await client.send(PAYLOAD)

            assert result.error_category == ErrorCategory.CONNECTION

    @pytest.mark.asyncio
    async def test_auth_error_is_reported(self, client):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(401)

            result = await client.send(PAYLOAD)

            assert result.error_category == ErrorCategory.AUTH_ERROR

    @pytest.mark.asyncio
    async def test_secret_is_not_logged(self, client, caplog):
        with patch.object(client._client, "post", new_callable=AsyncMock) as mock_post:
            mock_post.return_value = _response(500)

            await client.send(PAYLOAD)

        assert SECRET not in caplog.text
        for record in caplog.records:
            assert SECRET not in str(record.__dict__)


class TestVerifyWebhookToken:
    """Tests for callback token verification."""

    def test_matching_token(self):
        assert verify_webhook_token(SECRET, SECRET) is True

    def test_wrong_token(self):
        assert verify_webhook_token("wrong", SECRET) is False

    def test_missing_token(self):
        assert verify_webhook_token(None, SECRET) is False

    def test_empty_secret_never_matches(self):
        assert verify_webhook_token("", "") is False
