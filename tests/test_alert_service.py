from unittest.mock import MagicMock, Mock, patch

import httpx

from app.services.alert_service import alert_critical, alert_error, format_alert, send_alert


def _client(mock_client_class, status_code=200):
    mock_client = MagicMock()
    mock_client_class.return_value.__enter__.return_value = mock_client
    mock_response = Mock()
    mock_response.status_code = status_code
    mock_client.post.return_value = mock_response
    return mock_client


class TestSendAlert:
    @patch("app.services.alert_service.ALERT_BOT_TOKEN", None)
    @patch("app.services.alert_service.ALERT_CHAT_ID", None)
    def test_returns_false_when_not_configured(self):
        assert send_alert("ERROR", "Test message") is False

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_posts_to_telegram(self, mock_client_class):
        mock_client = _client(mock_client_class)

        assert send_alert("ERROR", "AI director unavailable") is True

        url = mock_client.post.call_args[0][0]
        payload = mock_client.post.call_args[1]["json"]
        assert url == "https://api.telegram.org/bottest-token/sendMessage"
        assert payload["chat_id"] == "test-chat"
        assert payload["text"].startswith("[error]")

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_non_200_is_failure(self, mock_client_class):
        _client(mock_client_class, status_code=400)
        assert send_alert("ERROR", "boom") is False

    @patch("app.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("app.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("app.services.alert_service.httpx.Client")
    def test_transport_error_is_swallowed(self, mock_client_class):
        mock_client = _client(mock_client_class)
        mock_client.post.side_effect = httpx.ConnectError("unreachable")
        assert send_alert("CRITICAL", "boom") is False


class TestFormatAlert:
    def test_context_lines_skip_none(self):
        text = format_alert("CRITICAL", "save failed", {"conversation_id": "c-1", "order": None})
        assert "[critical]" in text
        assert "conversation_id=c-1" in text
        assert "order=" not in text

    def test_unknown_level(self):
        assert format_alert("DEBUG", "x").startswith("[info]")


class TestHelpers:
    @patch("app.services.alert_service.send_alert")
    def test_alert_error(self, mock_send):
        alert_error("msg", {"a": 1})
        mock_send.assert_called_once_with("ERROR", "msg", {"a": 1})

    @patch("app.services.alert_service.send_alert")
    def test_alert_critical(self, mock_send):
        alert_critical("msg")
        mock_send.assert_called_once_with("CRITICAL", "msg", None)
