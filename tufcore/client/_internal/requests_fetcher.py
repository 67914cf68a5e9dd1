# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Provides an implementation of ``FetcherInterface`` using the Requests HTTP
library.
"""

import logging
from typing import Dict, Iterator, Optional, Tuple
from urllib import parse

import requests

import tufcore
from tufcore.api import exceptions
from tufcore.client.fetcher import FetcherInterface

logger = logging.getLogger(__name__)


class RequestsFetcher(FetcherInterface):
    """An implementation of ``FetcherInterface`` based on the requests library.

    One ``requests.Session`` is kept per scheme and hostname: connections to
    a host are reused, but no state (e.g. cookies) is shared between hosts.

    Attributes:
        socket_timeout: Timeout in seconds, used for both initial connection
            delay and the maximum delay between bytes received.
        chunk_size: Chunk size in bytes used when downloading.
        app_user_agent: Prefix for the User-Agent header.
    """

    def __init__(
        self,
        socket_timeout: int = 30,
        chunk_size: int = 400000,
        app_user_agent: Optional[str] = None,
    ) -> None:
        self._sessions: Dict[Tuple[str, str], requests.Session] = {}
        self.socket_timeout: int = socket_timeout  # seconds
        self.chunk_size: int = chunk_size  # bytes
        self.app_user_agent = app_user_agent

    def _fetch(self, url: str) -> Iterator[bytes]:
        """Fetch the contents of HTTP/HTTPS url from a remote server.

        Raises:
            exceptions.SlowRetrievalError: Timeout occurs while receiving
                data.
            exceptions.DocumentNotFoundError: HTTP 403 or 404 is received.
            exceptions.DownloadHTTPError: Another HTTP error code is received.

        Returns:
            Bytes iterator
        """
        session = self._get_session(url)

        # stream=True defers the body; timeout applies to connect and to
        # every gap between received bytes
        try:
            response = session.get(
                url, stream=True, timeout=self.socket_timeout
            )
        except requests.exceptions.Timeout as e:
            raise exceptions.SlowRetrievalError(f"Timed out: {url}") from e

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            response.close()
            status = e.response.status_code
            if status in {403, 404}:
                raise exceptions.DocumentNotFoundError(str(e)) from e
            raise exceptions.DownloadHTTPError(str(e), status) from e

        return self._chunks(response)

    def _chunks(self, response: "requests.Response") -> Iterator[bytes]:
        """Generator returned by ``_fetch()``, so connection errors and body
        download errors surface separately.
        """
        try:
            yield from response.iter_content(self.chunk_size)
        except (
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
        ) as e:
            raise exceptions.SlowRetrievalError("Body download failed") from e
        finally:
            response.close()

    def _get_session(self, url: str) -> requests.Session:
        """Return the session for the scheme and hostname of ``url``.

        Raises:
            exceptions.DownloadError: When there is a problem parsing the url.
        """
        parsed_url = parse.urlparse(url)
        if not parsed_url.scheme:
            raise exceptions.DownloadError(f"Failed to parse URL {url}")

        session_index = (parsed_url.scheme, parsed_url.hostname or "")
        session = self._sessions.get(session_index)
        if session is not None:
            logger.debug("Reusing session %s", session_index)
            return session

        session = requests.Session()
        ua = f"tufcore/{tufcore.__version__} {session.headers['User-Agent']}"
        if self.app_user_agent is not None:
            ua = f"{self.app_user_agent} {ua}"
        session.headers["User-Agent"] = ua
        self._sessions[session_index] = session
        logger.debug("Made new session %s", session_index)

        return session
