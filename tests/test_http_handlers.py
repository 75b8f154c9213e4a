# Tests for HTTPHandlers
# Outbound calls made by RestAPI activities

from unittest.mock import Mock, patch

import pytest
import requests

from jpel.api.handlers import HTTPHandlers


def make_response(status=200, payload=None, text="", reason="OK"):
    response = Mock()
    response.status_code = status
    response.reason = reason
    response.headers = {"Content-Type": "application/json"}
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    response.text = text
    return response


@pytest.fixture
def handlers():
    return HTTPHandlers(default_timeout=5)


class TestExecute:
    @patch("jpel.api.handlers.http_handlers.requests.request")
    def test_get_request(self, mock_request, handlers):
        """GET passes params and the default timeout, and parses JSON"""
        mock_request.return_value = make_response(payload={"data": "test"})

        result = handlers.execute("get", "http://example.com/api", params={"q": "x"})

        call_kwargs = mock_request.call_args[1]
        assert call_kwargs["method"] == "GET"
        assert call_kwargs["url"] == "http://example.com/api"
        assert call_kwargs["params"] == {"q": "x"}
        assert call_kwargs["timeout"] == 5
        assert "json" not in call_kwargs
        assert result == {
            "status": 200,
            "statusText": "OK",
            "headers": {"Content-Type": "application/json"},
            "data": {"data": "test"},
        }

    @patch("jpel.api.handlers.http_handlers.requests.request")
    def test_post_sends_json_body(self, mock_request, handlers):
        mock_request.return_value = make_response(status=201, payload={"id": 123}, reason="Created")

        result = handlers.execute(
            "POST",
            "http://example.com/api",
            headers={"X-Count": 3},
            body={"name": "test"},
            timeout=1.5,
        )

        call_kwargs = mock_request.call_args[1]
        assert call_kwargs["json"] == {"name": "test"}
        assert call_kwargs["headers"] == {"X-Count": "3"}
        assert call_kwargs["timeout"] == 1.5
        assert result["status"] == 201

    @patch("jpel.api.handlers.http_handlers.requests.request")
    def test_text_response(self, mock_request, handlers):
        mock_request.return_value = make_response(status=500, text="boom", reason="Server Error")

        result = handlers.execute("GET", "http://example.com")
        assert result["status"] == 500
        assert result["data"] == "boom"

    @patch("jpel.api.handlers.http_handlers.requests.request")
    def test_network_errors_propagate(self, mock_request, handlers):
        mock_request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(requests.exceptions.RequestException):
            handlers.execute("GET", "http://example.com")

    def test_default_timeout_from_environment(self, monkeypatch):
        monkeypatch.setenv("JPEL_HTTP_TIMEOUT_SECONDS", "12")
        assert HTTPHandlers().default_timeout == 12.0
        monkeypatch.setenv("JPEL_HTTP_TIMEOUT_SECONDS", "bad")
        assert HTTPHandlers().default_timeout == 30.0
