# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""tufcore client public API."""

from tufcore.api.metadata import TargetFile
from tufcore.client._internal.requests_fetcher import RequestsFetcher
from tufcore.client.config import UpdaterConfig
from tufcore.client.fetcher import FetcherInterface
from tufcore.client.storage import (
    FilesystemStorage,
    MemoryStorage,
    MetadataStorage,
)
from tufcore.client.updater import Updater

__all__ = [
    FetcherInterface.__name__,
    FilesystemStorage.__name__,
    MemoryStorage.__name__,
    MetadataStorage.__name__,
    RequestsFetcher.__name__,
    TargetFile.__name__,
    Updater.__name__,
    UpdaterConfig.__name__,
]
