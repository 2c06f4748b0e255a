"""
Unit tests for ipfs.py (Pinata uploads).

Run with: pytest tests/test_ipfs.py -v
"""

from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_response
from ipfs import upload_to_ipfs


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "fox.png"
    path.write_bytes(b"\x89PNG fake")
    return path


@pytest.fixture
def http():
    session = MagicMock()
    session.post.return_value = make_response({"IpfsHash": "QmFox"})
    return session


class TestUpload:
    def test_success(self, mock_config, image, http):
        result = upload_to_ipfs(str(image), jwt="jwt-token", session=http)

        assert result == {
            "success": True,
            "ipfs_hash": "QmFox",
            "url": "https://ipfs.io/ipfs/QmFox",
        }
        kwargs = http.post.call_args.kwargs
        assert kwargs["headers"]["Authorization"] == "Bearer jwt-token"
        assert kwargs["files"]["file"][0] == "fox.png"

    def test_custom_gateway(self, mock_config, image, http):
        result = upload_to_ipfs(
            str(image), jwt="j", gateway="https://gw.test/ipfs", session=http
        )

        assert result["url"] == "https://gw.test/ipfs/QmFox"

    def test_jwt_from_env(self, mock_config, image, http, monkeypatch):
        monkeypatch.setenv("PINATA_JWT", "env-jwt")

        upload_to_ipfs(str(image), session=http)

        assert http.post.call_args.kwargs["headers"]["Authorization"] == "Bearer env-jwt"

    def test_missing_jwt(self, mock_config, image, http):
        result = upload_to_ipfs(str(image), session=http)

        assert result["success"] is False
        assert "Pinata" in result["error"]
        http.post.assert_not_called()

    def test_missing_file(self, mock_config, tmp_path, http):
        result = upload_to_ipfs(str(tmp_path / "nope.png"), jwt="j", session=http)

        assert result["success"] is False
        assert "File not found" in result["error"]

    def test_http_error(self, mock_config, image, http):
        http.post.return_value = make_response({"error": "unauthorized"}, status=401)

        result = upload_to_ipfs(str(image), jwt="j", session=http)

        assert result["success"] is False
        assert result["status_code"] == 401

    def test_connection_error(self, mock_config, image, http):
        http.post.side_effect = requests.exceptions.ConnectionError("down")

        result = upload_to_ipfs(str(image), jwt="j", session=http)

        assert result["success"] is False
        assert "down" in result["error"]

    def test_unexpected_body(self, mock_config, image, http):
        http.post.return_value = make_response({"cid": "x"})

        result = upload_to_ipfs(str(image), jwt="j", session=http)

        assert result == {"success": False, "error": "Unexpected pinning response"}
