from unittest.mock import AsyncMock, MagicMock, Mock, patch

import pytest

from wabot.services.alert_service import alert_error, alert_warning, send_alert


@pytest.fixture
def alerts_configured(monkeypatch):
    monkeypatch.setenv("ALERT_BOT_TOKEN", "test-token")
    monkeypatch.setenv("ALERT_CHAT_ID", "test-chat")


def _client_with_status(mock_client_class, status_code: int) -> MagicMock:
    mock_client = MagicMock()
    mock_client.post = AsyncMock(return_value=Mock(status_code=status_code))
    mock_client_class.return_value.__aenter__.return_value = mock_client
    return mock_client


class TestSendAlert:
    @pytest.mark.asyncio
    async def test_returns_false_when_not_configured(self):
        result = await send_alert("ERROR", "Test message")
        assert result is False

    @pytest.mark.asyncio
    @patch("wabot.services.alert_service.httpx.AsyncClient")
    async def test_sends_alert_to_telegram(self, mock_client_class, alerts_configured):
        mock_client = _client_with_status(mock_client_class, 200)

        result = await send_alert("ERROR", "Test error message")

        assert result is True
        mock_client.post.assert_awaited_once()
        call_args = mock_client.post.call_args
        assert "api.telegram.org/bottest-token" in call_args[0][0]
        json_data = call_args[1]["json"]
        assert json_data["chat_id"] == "test-chat"
        assert "ERROR" in json_data["text"]

    @pytest.mark.asyncio
    @patch("wabot.services.alert_service.httpx.AsyncClient")
    async def test_includes_context_in_message(self, mock_client_class, alerts_configured):
        mock_client = _client_with_status(mock_client_class, 200)

        await send_alert("ERROR", "Test message", {"to": "***4567", "status": 401})

        text = mock_client.post.call_args[1]["json"]["text"]
        assert "***4567" in text
        assert "401" in text

    @pytest.mark.asyncio
    @patch("wabot.services.alert_service.httpx.AsyncClient")
    async def test_returns_false_on_telegram_error(self, mock_client_class, alerts_configured):
        _client_with_status(mock_client_class, 400)

        assert await send_alert("ERROR", "Test message") is False

    @pytest.mark.asyncio
    @patch("wabot.services.alert_service.httpx.AsyncClient")
    async def test_returns_false_on_exception(self, mock_client_class, alerts_configured):
        mock_client_class.return_value.__aenter__.side_effect = Exception("Network error")

        assert await send_alert("ERROR", "Test message") is False


class TestAlertShortcuts:
    @pytest.mark.asyncio
    @patch("wabot.services.alert_service.send_alert", new_callable=AsyncMock)
    async def test_alert_error(self, mock_send):
        mock_send.return_value = True

        result = await alert_error("Error message", {"key": "value"})

        mock_send.assert_awaited_once_with("ERROR", "Error message", {"key": "value"})
        assert result is True

    @pytest.mark.asyncio
    @patch("wabot.services.alert_service.send_alert", new_callable=AsyncMock)
    async def test_alert_warning(self, mock_send):
        mock_send.return_value = True

        await alert_warning("Warning message")

        mock_send.assert_awaited_once_with("WARNING", "Warning message", None)
