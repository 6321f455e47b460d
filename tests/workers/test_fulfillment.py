"""Tests for the fulfillment email task and the notifier."""
from unittest.mock import MagicMock, patch

import httpx
import pytest

from paygate.services.notifications.service import FulfillmentNotifier, FulfillmentRequest
from paygate.workers.tasks.fulfillment import build_message, send_fulfillment_email


def test_build_message_download():
    message = build_message("download", "maria@b.com")

    assert message["to"] == "maria@b.com"
    assert message["template"] == "download"
    assert message["variables"]["name"] == "maria"


def test_build_message_welcome_uses_first_name():
    message = build_message("welcome", "maria@b.com", "Maria Silva")

    assert message["subject"].startswith("🎉 Maria,")


def test_build_message_unknown_kind():
    with pytest.raises(ValueError):
        build_message("invoice", "maria@b.com")


def test_task_drops_without_mailer():
    with patch("paygate.workers.tasks.fulfillment.settings") as mock_settings:
        mock_settings.mailer_url = ""
        result = send_fulfillment_email("download", "a@b.com", "intent-1")

    assert result == {"ok": False, "error": "mailer_not_configured"}


def test_task_posts_to_mailer():
    response = MagicMock()
    client = MagicMock()
    client.__enter__.return_value = client
    client.post.return_value = response
    with patch("paygate.workers.tasks.fulfillment.settings") as mock_settings, patch(
        "paygate.workers.tasks.fulfillment.httpx.Client", return_value=client
    ):
        mock_settings.mailer_url = "https://mailer.example.com/send"
        mock_settings.mailer_api_key = "key"
        mock_settings.http_client_timeout = 5.0
        mock_settings.product_name = "DinDin"
        result = send_fulfillment_email("download", "a@b.com", "intent-1")

    assert result == {"ok": True, "intent_id": "intent-1"}
    url = client.post.call_args.args[0]
    assert url == "https://mailer.example.com/send"
    assert client.post.call_args.kwargs["headers"] == {"Authorization": "Bearer key"}


def test_task_mailer_failure_is_logged_not_raised():
    client = MagicMock()
    client.__enter__.return_value = client
    client.post.side_effect = httpx.ConnectError("refused")
    with patch("paygate.workers.tasks.fulfillment.settings") as mock_settings, patch(
        "paygate.workers.tasks.fulfillment.httpx.Client", return_value=client
    ):
        mock_settings.mailer_url = "https://mailer.example.com/send"
        mock_settings.mailer_api_key = ""
        mock_settings.http_client_timeout = 5.0
        mock_settings.product_name = "DinDin"
        result = send_fulfillment_email("welcome", "a@b.com", "intent-1")

    assert result["ok"] is False


def test_notifier_skips_masked_email():
    with patch("paygate.workers.tasks.fulfillment.send_fulfillment_email") as task:
        queued = FulfillmentNotifier().request(FulfillmentRequest(kind="download", email="XXXXXXXXXXX", intent_id="i1"))

    assert queued is False
    task.delay.assert_not_called()


def test_notifier_enqueues():
    with patch("paygate.workers.tasks.fulfillment.send_fulfillment_email") as task:
        queued = FulfillmentNotifier().request(
            FulfillmentRequest(kind="welcome", email="a@b.com", intent_id="i1", full_name="Ana")
        )

    assert queued is True
    task.delay.assert_called_once_with("welcome", "a@b.com", "i1", "Ana")


def test_notifier_enqueue_failure_is_swallowed():
    with patch("paygate.workers.tasks.fulfillment.send_fulfillment_email") as task:
        task.delay.side_effect = ConnectionError("broker down")
        queued = FulfillmentNotifier().request(FulfillmentRequest(kind="download", email="a@b.com", intent_id="i1"))

    assert queued is False
