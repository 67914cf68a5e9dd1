# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Unit tests for FetcherInterface and RequestsFetcher."""

import io
import logging
import sys
import unittest
from typing import Iterator, List
from unittest.mock import Mock, patch

import requests

from tests import utils
from tufcore.api import exceptions
from tufcore.client import FetcherInterface, RequestsFetcher

logger = logging.getLogger(__name__)

URL = "https://example.com/metadata/timestamp.json"


class ChunkFetcher(FetcherInterface):
    """Serves the same chunks for every url."""

    def __init__(self, chunks: List[bytes]):
        self.chunks = chunks

    def _fetch(self, url: str) -> Iterator[bytes]:
        yield from self.chunks


class BrokenFetcher(FetcherInterface):
    """Fails with an arbitrary exception."""

    def _fetch(self, url: str) -> Iterator[bytes]:
        raise ValueError("something unexpected")


class TestFetcherInterface(unittest.TestCase):
    """Length limits and error wrapping common to all fetchers."""

    def setUp(self) -> None:
        self.fetcher = ChunkFetcher([b"junk", b" da", b"ta"])
        self.file_contents = b"junk data"
        self.file_length = len(self.file_contents)

    def test_download_bytes(self) -> None:
        data = self.fetcher.download_bytes(URL, self.file_length)
        self.assertEqual(self.file_contents, data)

    def test_download_bytes_upper_length(self) -> None:
        data = self.fetcher.download_bytes(URL, self.file_length + 4)
        self.assertEqual(self.file_contents, data)

    def test_download_bytes_length_mismatch(self) -> None:
        with self.assertRaises(exceptions.DownloadLengthMismatchError):
            self.fetcher.download_bytes(URL, self.file_length - 1)

    def test_download_file(self) -> None:
        with self.fetcher.download_file(URL, self.file_length) as temp_file:
            temp_file.seek(0, io.SEEK_END)
            self.assertEqual(self.file_length, temp_file.tell())

    def test_download_file_length_mismatch(self) -> None:
        with self.assertRaises(exceptions.DownloadLengthMismatchError):
            with self.fetcher.download_file(URL, self.file_length - 4):
                pass

    def test_iter_bytes_stops_early(self) -> None:
        received = []
        with self.assertRaises(exceptions.DownloadLengthMismatchError):
            for chunk in self.fetcher.iter_bytes(URL, 6):
                received.append(chunk)
        # the chunk crossing the limit is never handed out
        self.assertEqual(received, [b"junk"])

    def test_iter_bytes_without_limit(self) -> None:
        chunks = list(self.fetcher.iter_bytes(URL, None))
        self.assertEqual(b"".join(chunks), self.file_contents)

    def test_unexpected_errors_are_wrapped(self) -> None:
        with self.assertRaises(exceptions.DownloadError) as ctx:
            BrokenFetcher().fetch(URL)
        self.assertIsInstance(ctx.exception.__cause__, ValueError)

        with self.assertRaises(exceptions.DownloadError):
            BrokenFetcher().download_bytes(URL, 10)


class TestRequestsFetcher(unittest.TestCase):
    """Test RequestsFetcher against a mocked requests.Session."""

    def setUp(self) -> None:
        self.fetcher = RequestsFetcher()

    @staticmethod
    def _response(status: int, chunks: List[bytes]) -> Mock:
        response = Mock()
        response.status_code = status
        response.iter_content.return_value = iter(chunks)
        if status >= 400:
            response.raise_for_status.side_effect = requests.HTTPError(
                f"{status} error", response=response
            )
        return response

    @patch.object(requests.Session, "get")
    def test_fetch(self, mock_session_get: Mock) -> None:
        response = self._response(200, [b"junk ", b"data"])
        mock_session_get.return_value = response

        data = b"".join(self.fetcher.fetch(URL))
        self.assertEqual(data, b"junk data")
        response.close.assert_called()
        _, kwargs = mock_session_get.call_args
        self.assertTrue(kwargs["stream"])
        self.assertEqual(kwargs["timeout"], self.fetcher.socket_timeout)

    http_errors: utils.DataSet = {
        "forbidden": (403, exceptions.DocumentNotFoundError),
        "not found": (404, exceptions.DocumentNotFoundError),
        "server error": (500, exceptions.DownloadHTTPError),
        "unavailable": (503, exceptions.DownloadHTTPError),
    }

    @utils.run_sub_tests_with_dataset(http_errors)
    def test_http_error(self, case: tuple) -> None:
        status, expected_error = case
        with patch.object(requests.Session, "get") as mock_session_get:
            response = self._response(status, [])
            mock_session_get.return_value = response
            with self.assertRaises(expected_error) as ctx:
                self.fetcher.fetch(URL)

        response.close.assert_called_once()
        if expected_error is exceptions.DownloadHTTPError:
            self.assertEqual(ctx.exception.status_code, status)

    @patch.object(
        requests.Session,
        "get",
        side_effect=requests.exceptions.Timeout("Simulated timeout"),
    )
    def test_session_get_timeout(self, mock_session_get: Mock) -> None:
        with self.assertRaises(exceptions.SlowRetrievalError):
            self.fetcher.fetch(URL)
        mock_session_get.assert_called_once()

    @patch.object(requests.Session, "get")
    def test_response_read_timeout(self, mock_session_get: Mock) -> None:
        mock_response = Mock()
        attr = {
            "iter_content.side_effect": requests.exceptions.ConnectionError(
                "Simulated timeout"
            )
        }
        mock_response.configure_mock(**attr)
        mock_session_get.return_value = mock_response

        with self.assertRaises(exceptions.SlowRetrievalError):
            next(self.fetcher.fetch(URL))
        mock_response.iter_content.assert_called_once()

    def test_url_parsing(self) -> None:
        with self.assertRaises(exceptions.DownloadError):
            self.fetcher.fetch("missing-scheme-and-hostname-in-url")

    def test_sessions(self) -> None:
        session = self.fetcher._get_session(URL)
        self.assertIs(
            session, self.fetcher._get_session("https://example.com/other")
        )
        self.assertIsNot(
            session, self.fetcher._get_session("http://example.com/")
        )
        self.assertTrue(session.headers["User-Agent"].startswith("tufcore/"))

    def test_app_user_agent(self) -> None:
        fetcher = RequestsFetcher(app_user_agent="MyApp/1.2")
        session = fetcher._get_session(URL)
        self.assertTrue(
            session.headers["User-Agent"].startswith("MyApp/1.2 tufcore/")
        )


# Run unit test.
if __name__ == "__main__":
    utils.configure_test_logging(sys.argv)
    unittest.main()
