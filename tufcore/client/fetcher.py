# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Provides an interface for network IO abstraction."""

import abc
import logging
import tempfile
from contextlib import contextmanager
from typing import IO, Iterator, Optional

from tufcore.api import exceptions

logger = logging.getLogger(__name__)


class FetcherInterface(metaclass=abc.ABCMeta):
    """Defines an interface for abstract network download.

    Implementations only need to provide ``_fetch()``; the public methods
    enforce length limits and error types on top of it.

    Fetchers know nothing about trust: everything they return is verified
    by the caller before it is used.
    """

    @abc.abstractmethod
    def _fetch(self, url: str) -> Iterator[bytes]:
        """Fetch the contents of ``url``.

        Implementations raise ``DownloadHTTPError`` for HTTP error codes and
        ``DocumentNotFoundError`` when a non-HTTP source has no such
        document. Any other exception is wrapped in ``DownloadError`` by
        ``fetch()``.

        Returns:
            Bytes iterator
        """
        raise NotImplementedError  # pragma: no cover

    def fetch(self, url: str) -> Iterator[bytes]:
        """Fetch the contents of ``url``.

        Raises:
            exceptions.DownloadError: An error occurred during download.

        Returns:
            Bytes iterator
        """
        try:
            return self._fetch(url)
        except exceptions.DownloadError as e:
            raise e
        except Exception as e:
            raise exceptions.DownloadError(f"Failed to download {url}") from e

    @contextmanager
    def download_file(self, url: str, max_length: int) -> Iterator[IO]:
        """Download ``url`` into a temporary file, at most ``max_length``
        bytes.

        Use within a ``with`` block so the temporary file is always released.

        Raises:
            exceptions.DownloadError: An error occurred during download.
            exceptions.DownloadLengthMismatchError: Downloaded bytes exceed
                ``max_length``.

        Yields:
            ``TemporaryFile`` positioned at the start of the content.
        """
        logger.debug("Downloading: %s", url)

        received = 0
        with tempfile.TemporaryFile() as temp_file:
            for chunk in self.iter_bytes(url, max_length):
                received += len(chunk)
                temp_file.write(chunk)

            logger.debug("Downloaded %d out of %d bytes", received, max_length)
            temp_file.seek(0)
            yield temp_file

    def iter_bytes(
        self, url: str, max_length: Optional[int]
    ) -> Iterator[bytes]:
        """Yield chunks of ``url`` while enforcing ``max_length``.

        With ``max_length=None`` the caller checks the length itself, as
        it consumes the chunks.

        Raises:
            exceptions.DownloadError: An error occurred during download.
            exceptions.DownloadLengthMismatchError: More than ``max_length``
                bytes were received.
        """
        received = 0
        try:
            for chunk in self.fetch(url):
                received += len(chunk)
                if max_length is not None and received > max_length:
                    raise exceptions.DownloadLengthMismatchError(
                        f"Downloaded {received} bytes exceeding"
                        f" the maximum allowed length of {max_length}"
                    )
                yield chunk
        except exceptions.DownloadError:
            raise
        except Exception as e:
            # errors raised while the body is streamed
            raise exceptions.DownloadError(f"Failed to download {url}") from e

    def download_bytes(self, url: str, max_length: int) -> bytes:
        """Download bytes from given ``url``.

        Returns the downloaded bytes, otherwise like ``download_file()``.
        """
        with self.download_file(url, max_length) as dl_file:
            return dl_file.read()
