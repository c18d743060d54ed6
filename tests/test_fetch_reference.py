# File: tests/test_fetch_reference.py
# Test cases for qol/fetch_reference.py using pytest.

import pytest
import requests
from unittest.mock import patch, MagicMock

from qol.exceptions import ExternalFetchError
from qol.fetch_reference import fetch_resource

URL = "https://example.org/genome.fa.gz"


@pytest.fixture
def mock_get():
    """
    Mock fixture for requests.get used by the downloader.
    """
    with patch("qol.fetch_reference.requests.get") as mock:
        yield mock


def _response(chunks):
    response = MagicMock()
    response.raise_for_status.return_value = None
    response.iter_content.return_value = chunks
    return response


def test_download_writes_file(tmp_path, mock_get):
    """
    Streamed chunks end up in dest and no .part file is left behind.
    """
    mock_get.return_value = _response([b">1\n", b"ACGT\n"])
    dest = tmp_path / "ref" / "genome.fa"

    out = fetch_resource(URL, dest, retries=1, backoff=0)

    assert out == dest
    assert dest.read_bytes() == b">1\nACGT\n"
    assert not (tmp_path / "ref" / "genome.fa.part").exists()
    args, kwargs = mock_get.call_args
    assert args == (URL,)
    assert kwargs["stream"] is True
    mock_get.return_value.close.assert_called_once()


def test_existing_file_is_not_downloaded(tmp_path, mock_get):
    dest = tmp_path / "genome.fa"
    dest.write_text("cached")

    assert fetch_resource(URL, dest) == dest
    mock_get.assert_not_called()
    assert dest.read_text() == "cached"


def test_retries_then_succeeds(tmp_path, mock_get):
    mock_get.side_effect = [
        requests.exceptions.ConnectionError("reset"),
        _response([b"data"]),
    ]
    dest = tmp_path / "genome.fa"

    fetch_resource(URL, dest, retries=3, backoff=0)

    assert mock_get.call_count == 2
    assert dest.read_bytes() == b"data"


def test_raises_after_last_attempt(tmp_path, mock_get):
    """
    Exhausted retries raise ExternalFetchError and leave no partial file.
    """
    failing = _response([])
    failing.raise_for_status.side_effect = requests.exceptions.HTTPError("404 Not Found")
    mock_get.return_value = failing
    dest = tmp_path / "genome.fa"

    with pytest.raises(ExternalFetchError) as exc:
        fetch_resource(URL, dest, retries=2, backoff=0)

    assert exc.value.url == URL
    assert "404" in str(exc.value)
    assert mock_get.call_count == 2
    assert not dest.exists()
    assert list(tmp_path.iterdir()) == []


def test_empty_url_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        fetch_resource("", tmp_path / "x")
