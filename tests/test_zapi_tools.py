"""Unit tests for zapi_tools — gateway send and status calls."""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import requests

from tools.zapi_tools import (
    ZApiCredentials,
    ZApiError,
    credentials_for,
    get_instance_status,
    normalize_phone,
    send_text,
)


ZAPI_MODULE = "tools.zapi_tools"

CREDS = ZApiCredentials(instance_id="3C0FFEE", token="tok-123", client_token="client-456")


def _response(status_code=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.json.return_value = payload
    resp.text = text
    return resp


class TestSendText:
    @patch(f"{ZAPI_MODULE}.requests.post")
    def test_sends_successfully(self, mock_post):
        mock_post.return_value = _response(payload={"zaapId": "z1", "messageId": "M-42"})

        message_id = send_text(CREDS, "+55 (11) 98888-7777", "Olá Ana!")

        assert message_id == "M-42"
        mock_post.assert_called_once()
        call = mock_post.call_args
        assert call.args[0] == "https://api.z-api.io/instances/3C0FFEE/token/tok-123/send-text"
        assert call.kwargs["json"] == {"phone": "5511988887777", "message": "Olá Ana!"}
        assert call.kwargs["headers"]["Client-Token"] == "client-456"

    @patch(f"{ZAPI_MODULE}.requests.post")
    def test_prefers_zapi_message_id(self, mock_post):
        mock_post.return_value = _response(payload={"zapiMessageId": "ZM-1", "messageId": "M-1"})

        assert send_text(CREDS, "5511988887777", "oi") == "ZM-1"

    @patch(f"{ZAPI_MODULE}.requests.post")
    def test_omits_client_token_header_when_unset(self, mock_post):
        mock_post.return_value = _response(payload={"id": "X"})

        send_text(ZApiCredentials(instance_id="i", token="t"), "5511", "oi")

        assert "Client-Token" not in mock_post.call_args.kwargs["headers"]

    @patch(f"{ZAPI_MODULE}.requests.post")
    def test_http_error_raises(self, mock_post):
        mock_post.return_value = _response(status_code=401, text="unauthorized")

        with pytest.raises(ZApiError) as excinfo:
            send_text(CREDS, "5511988887777", "oi")

        assert excinfo.value.status_code == 401

    @patch(f"{ZAPI_MODULE}.requests.post")
    def test_transport_error_raises(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("network down")

        with pytest.raises(ZApiError):
            send_text(CREDS, "5511988887777", "oi")

    @patch(f"{ZAPI_MODULE}.requests.post")
    def test_missing_message_id_raises(self, mock_post):
        mock_post.return_value = _response(payload={})

        with pytest.raises(ZApiError):
            send_text(CREDS, "5511988887777", "oi")


class TestInstanceStatus:
    @patch(f"{ZAPI_MODULE}.requests.get")
    def test_connected(self, mock_get):
        mock_get.return_value = _response(payload={"connected": True, "smartphoneConnected": True})

        status = get_instance_status(CREDS)

        assert status["connected"] is True
        assert status["smartphone_connected"] is True

    @patch(f"{ZAPI_MODULE}.requests.get")
    def test_error_is_reported_not_raised(self, mock_get):
        mock_get.side_effect = requests.Timeout("slow")

        status = get_instance_status(CREDS)

        assert status["connected"] is False
        assert "slow" in status["error"]


def test_normalize_phone():
    assert normalize_phone("+55 (11) 98888-7777") == "5511988887777"
    assert normalize_phone("") == ""


def test_credentials_for_instance_row():
    instance = SimpleNamespace(provider_instance_id="ABC", token="t", client_token=None)

    creds = credentials_for(instance)

    assert creds.instance_id == "ABC"
    assert creds.client_token is None
