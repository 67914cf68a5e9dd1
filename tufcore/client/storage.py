# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Local persistence of trusted metadata between runs.

Storage is not trusted: everything loaded from it goes through the same
verification as freshly downloaded metadata.
"""

import abc
import contextlib
import logging
import os
import tempfile
from typing import Dict, Optional
from urllib import parse

logger = logging.getLogger(__name__)


class MetadataStorage(metaclass=abc.ABCMeta):
    """Load and store raw metadata bytes keyed by role name."""

    @abc.abstractmethod
    def load(self, rolename: str) -> bytes:
        """Return stored bytes for ``rolename``.

        Raises:
            OSError: Nothing is stored for ``rolename`` or it is unreadable.
        """
        raise NotImplementedError  # pragma: no cover

    @abc.abstractmethod
    def store(self, rolename: str, data: bytes) -> None:
        """Replace stored bytes for ``rolename``.

        Raises:
            OSError: The data could not be written.
        """
        raise NotImplementedError  # pragma: no cover


class FilesystemStorage(MetadataStorage):
    """Stores metadata as ``<quoted rolename>.json`` files in ``directory``.

    Writes are atomic: a crash leaves either the old or the new file.
    """

    def __init__(self, directory: str):
        self.directory = directory

    def _path(self, rolename: str) -> str:
        # quote the rolename so e.g. path separators cannot escape directory
        encoded_name = parse.quote(rolename, "")
        return os.path.join(self.directory, f"{encoded_name}.json")

    def load(self, rolename: str) -> bytes:
        with open(self._path(rolename), "rb") as f:
            return f.read()

    def store(self, rolename: str, data: bytes) -> None:
        temp_file_name: Optional[str] = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=self.directory, delete=False
            ) as temp_file:
                temp_file_name = temp_file.name
                temp_file.write(data)
            os.replace(temp_file_name, self._path(rolename))
        except OSError as e:
            if temp_file_name is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.remove(temp_file_name)
            raise e
        logger.debug("Stored %s", rolename)


class MemoryStorage(MetadataStorage):
    """Keeps metadata in a dict, for embedders without a writable disk."""

    def __init__(self, initial: Optional[Dict[str, bytes]] = None):
        self.files: Dict[str, bytes] = dict(initial or {})

    def load(self, rolename: str) -> bytes:
        try:
            return self.files[rolename]
        except KeyError:
            raise FileNotFoundError(
                f"No stored metadata for {rolename}"
            ) from None

    def store(self, rolename: str, data: bytes) -> None:
        self.files[rolename] = data
