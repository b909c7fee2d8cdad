"""Tests for Bitrise API client behavior with mocked HTTP."""

import json
import sys
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import requests

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bitrise_analyzer.bitrise_client import BitriseClient
from bitrise_analyzer.errors import ApiError, AuthenticationError, OutputError


def _build_client() -> BitriseClient:
    return BitriseClient(token="secret-token")


def _response(status_code: int, payload=None, text: str = "", headers: dict | None = None):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    response.json.return_value = payload if payload is not None else {}
    return response


def _build_item(slug: str) -> dict:
    return {
        "slug": slug,
        "triggered_at": "2024-03-01T10:00:00Z",
        "finished_at": "2024-03-01T10:05:00Z",
        "status_text": "success",
    }


def test_client_rejects_empty_token():
    """Verify constructing a client without a token raises AuthenticationError."""
    with pytest.raises(AuthenticationError):
        BitriseClient(token="   ")


def test_client_sends_token_as_authorization_header():
    """Verify the raw token is sent in the Authorization header."""
    client = _build_client()

    assert client._session.headers["Authorization"] == "secret-token"


def test_get_json_builds_url_and_drops_empty_params():
    """Verify requests target the API root and omit parameters that are None."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(200, payload={"data": []}))

    client._get_json("builds", params={"next": None})

    call = client._session.get.call_args
    assert call.args[0] == "https://api.bitrise.io/v0.1/builds"
    assert call.kwargs["params"] == {}


def test_get_json_retries_on_429_and_succeeds():
    """Verify _get_json retries after HTTP 429 and honors Retry-After."""
    client = _build_client()
    first = _response(429, headers={"Retry-After": "2"})
    second = _response(200, payload={"data": [{"slug": "a"}]})

    client._session.get = Mock(side_effect=[first, second])

    with patch("bitrise_analyzer.bitrise_client.time.sleep") as sleep_mock:
        payload = client._get_json("builds")

    assert payload == {"data": [{"slug": "a"}]}
    assert client._session.get.call_count == 2
    sleep_mock.assert_called_once_with(2)


def test_get_json_retries_on_5xx_and_raises_after_max_retries():
    """Verify _get_json retries retryable server errors and raises ApiError after limit."""
    client = _build_client()
    server_error = _response(503, text="service unavailable")
    client._session.get = Mock(side_effect=[server_error] * client._MAX_RETRIES)

    with patch("bitrise_analyzer.bitrise_client.time.sleep") as sleep_mock:
        with pytest.raises(ApiError):
            client._get_json("builds")

    assert client._session.get.call_count == client._MAX_RETRIES
    assert sleep_mock.call_count == client._MAX_RETRIES - 1


def test_get_json_retries_connection_errors():
    """Verify transport failures are retried before giving up with ApiError."""
    client = _build_client()
    client._session.get = Mock(side_effect=requests.ConnectionError("connection reset"))

    with patch("bitrise_analyzer.bitrise_client.time.sleep"):
        with pytest.raises(ApiError):
            client._get_json("builds")

    assert client._session.get.call_count == client._MAX_RETRIES


@pytest.mark.parametrize("status_code", [401, 403])
def test_get_json_rejected_token_raises_authentication_error(status_code):
    """Verify HTTP 401/403 map to AuthenticationError without retrying."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(status_code, text="unauthorized"))

    with pytest.raises(AuthenticationError):
        client._get_json("builds")

    assert client._session.get.call_count == 1


def test_get_json_client_error_raises_api_error():
    """Verify non-retryable HTTP errors raise ApiError."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(404, text="not found"))

    with pytest.raises(ApiError, match="404"):
        client._get_json("builds")


def test_get_json_invalid_json_raises_api_error():
    """Verify an unparseable response body raises ApiError."""
    client = _build_client()
    response = _response(200)
    response.json.side_effect = ValueError("bad json")
    client._session.get = Mock(return_value=response)

    with pytest.raises(ApiError):
        client._get_json("builds")


def test_fetch_builds_page_rejects_non_list_data():
    """Verify a page whose data field is not a list raises ApiError."""
    client = _build_client()
    client._get_json = Mock(return_value={"data": {"slug": "a"}})

    with pytest.raises(ApiError):
        client.fetch_builds_page()


def test_fetch_all_builds_follows_next_cursor():
    """Verify listing follows paging.next until the cursor is absent."""
    client = _build_client()
    first_page = {"data": [_build_item("a"), _build_item("b")], "paging": {"next": "cursor-1"}}
    second_page = {"data": [_build_item("c")], "paging": {}}

    get_json_mock = Mock(side_effect=[first_page, second_page])
    client._get_json = get_json_mock

    builds = client.fetch_all_builds()

    assert [build["slug"] for build in builds] == ["a", "b", "c"]
    assert get_json_mock.call_count == 2
    first_call = get_json_mock.call_args_list[0]
    second_call = get_json_mock.call_args_list[1]
    assert first_call.kwargs["params"]["next"] is None
    assert second_call.kwargs["params"]["next"] == "cursor-1"


def test_fetch_builds_to_file_writes_json_array(tmp_path):
    """Verify every page is streamed into a single valid JSON array."""
    client = _build_client()
    client._get_json = Mock(
        side_effect=[
            {"data": [_build_item("a")], "paging": {"next": "cursor-1"}},
            {"data": [_build_item("b")], "paging": {"next": None}},
        ]
    )
    target = tmp_path / "data.json"

    total = client.fetch_builds_to_file(target)

    assert total == 2
    written = json.loads(target.read_text(encoding="utf-8"))
    assert [build["slug"] for build in written] == ["a", "b"]


def test_fetch_builds_to_file_writes_empty_array(tmp_path):
    """Verify an account without builds produces an empty JSON array."""
    client = _build_client()
    client._get_json = Mock(return_value={"data": [], "paging": {}})
    target = tmp_path / "data.json"

    assert client.fetch_builds_to_file(target) == 0
    assert json.loads(target.read_text(encoding="utf-8")) == []


def test_fetch_builds_to_file_unwritable_path_raises_output_error(tmp_path):
    """Verify write failures surface as OutputError."""
    client = _build_client()
    client._get_json = Mock(return_value={"data": [], "paging": {}})

    with pytest.raises(OutputError):
        client.fetch_builds_to_file(tmp_path / "missing" / "data.json")


def test_fetch_builds_to_file_failure_mid_paging_keeps_existing_file(tmp_path):
    """Verify an API failure after the first page leaves no truncated output behind."""
    client = _build_client()
    client._get_json = Mock(
        side_effect=[
            {"data": [_build_item("a")], "paging": {"next": "cursor-1"}},
            ApiError("Bitrise API request failed"),
        ]
    )
    target = tmp_path / "data.json"
    target.write_text('[{"slug": "old"}]\n', encoding="utf-8")

    with pytest.raises(ApiError):
        client.fetch_builds_to_file(target)

    assert json.loads(target.read_text(encoding="utf-8")) == [{"slug": "old"}]
    assert sorted(path.name for path in tmp_path.iterdir()) == ["data.json"]


def test_fetch_builds_to_file_auth_failure_creates_no_file(tmp_path):
    """Verify a rejected token on the first page writes nothing at the output path."""
    client = _build_client()
    client._get_json = Mock(side_effect=AuthenticationError("rejected"))

    with pytest.raises(AuthenticationError):
        client.fetch_builds_to_file(tmp_path / "data.json")

    assert list(tmp_path.iterdir()) == []
