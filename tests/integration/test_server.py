"""
Integration tests for a live BlobsServer.

Starts the server on an ephemeral port and talks to it over HTTP.
"""

import pytest
import requests

from localblobs.core.config_manager import BlobsConfig
from localblobs.core.lifecycle import LifecycleError
from localblobs.server import BlobsServer
from localblobs.services.blobs.models import SIGNED_URL_ACCEPT, Operation


@pytest.fixture
def events():
    return []


@pytest.fixture
def server(tmp_path, events):
    """Start a server with a token and stop it afterwards."""
    blobs = BlobsServer(directory=tmp_path / "root", token="secret", on_request=events.append)
    blobs.start()
    yield blobs
    blobs.stop()


def base(server):
    return server.url


class TestBlobsServer:
    """Test suite for the live server."""

    def test_start_reports_address(self, tmp_path):
        blobs = BlobsServer(directory=tmp_path / "root")
        try:
            address = blobs.start()
            assert address.family == "IPv4"
            assert address.port > 0
            assert blobs.url == f"http://localhost:{address.port}"
            assert (tmp_path / "root").is_dir()
        finally:
            blobs.stop()
        assert blobs.url is None

    def test_round_trip_over_http(self, server, events):
        url = f"{base(server)}/v1/blobs/site1/store1/foo"
        headers = {"Authorization": "Bearer secret"}

        assert requests.put(url, data=b"hello", headers=headers, timeout=5).status_code == 200
        assert requests.get(url, headers=headers, timeout=5).content == b"hello"
        assert requests.delete(url, headers=headers, timeout=5).status_code == 204
        assert requests.get(url, headers=headers, timeout=5).status_code == 404
        assert [event.type for event in events] == [
            Operation.SET, Operation.GET, Operation.DELETE, Operation.GET,
        ]

    def test_unauthorized_over_http(self, server, events):
        response = requests.get(f"{base(server)}/v1/blobs/site1/store1/foo", timeout=5)
        assert response.status_code == 401
        assert events == []

    def test_signed_url_uses_server_address(self, server):
        """Test that signed URLs point at the running server."""
        response = requests.put(
            f"{base(server)}/v1/sites/site1/foo",
            headers={"Authorization": "Bearer secret", "Accept": SIGNED_URL_ACCEPT},
            timeout=5,
        )
        signed = response.json()["url"]
        assert signed.startswith(f"{base(server)}/site1/production/foo?signature=")

        assert requests.put(signed, data=b"via signature", timeout=5).status_code == 200
        response = requests.get(
            f"{base(server)}/v1/sites/site1/foo",
            headers={"Authorization": "Bearer secret"},
            timeout=5,
        )
        assert response.content == b"via signature"

    def test_double_start_rejected(self, server):
        with pytest.raises(LifecycleError):
            server.start()

    def test_stop_without_start(self, tmp_path):
        blobs = BlobsServer(directory=tmp_path / "root")
        blobs.stop()
        assert not (tmp_path / "root").exists()

    def test_stop_closes_listener(self, tmp_path):
        blobs = BlobsServer(directory=tmp_path / "root")
        port = blobs.start().port
        blobs.stop()
        with pytest.raises(requests.ConnectionError):
            requests.get(f"http://127.0.0.1:{port}/v1/blobs/s/t", timeout=5)

    def test_context_manager(self, tmp_path):
        with BlobsServer(directory=tmp_path / "root") as blobs:
            response = requests.get(f"{blobs.url}/v1/blobs/site1/store1", timeout=5)
            assert response.json() == {"blobs": [], "directories": []}

    def test_token_hash_hides_secret(self, server):
        assert "secret" not in server.token_hash
        assert len(server.token_hash) == 64

    def test_from_config(self, tmp_path):
        config = BlobsConfig(directory=str(tmp_path / "configured"), token="abc", debug=True)
        messages = []
        blobs = BlobsServer.from_config(config, logger=messages.append)
        assert blobs.directory == tmp_path / "configured"
        blobs.log_debug("hello")
        assert messages == ["hello"]
