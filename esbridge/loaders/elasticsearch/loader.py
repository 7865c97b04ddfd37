# esbridge/loaders/elasticsearch/loader.py
from __future__ import annotations

import logging
from typing import Optional

from esbridge.clients import create_client
from esbridge.core.client_base import EngineClient
from esbridge.core.config import ConnectionConfig, JobConfig, WriteConfig
from esbridge.core.errors import PartialBulkFailure, StateError
from esbridge.core.loader_base import LoaderClient, LoadResult
from esbridge.core.models import IndexTarget, Record
from esbridge.write.batcher import BulkBatcher
from esbridge.write.dispatcher import BulkDispatcher, FailureCallback

logger = logging.getLogger(__name__)


class ElasticsearchLoader(LoaderClient):
    """
    Bulk write sink: records go through a BulkBatcher into a BulkDispatcher.
    finalize() flushes, waits until every bulk request has completed and
    raises PartialBulkFailure if any item was rejected (unless
    raise_on_failure is off, in which case the failures are in the LoadResult).
    """

    def __init__(
        self,
        index: str,
        doc_type: Optional[str] = None,
        *,
        client: Optional[EngineClient] = None,
        connection: Optional[ConnectionConfig] = None,
        write: Optional[WriteConfig] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> None:
        self.index = index
        self.doc_type = doc_type
        self.write = write or WriteConfig()
        self._connection = connection or ConnectionConfig(index=index)
        self._on_failure = on_failure
        self.client: Optional[EngineClient] = client
        self._owns_client = client is None
        self._dispatcher: Optional[BulkDispatcher] = None
        self._batcher: Optional[BulkBatcher] = None
        self._result: Optional[LoadResult] = None

    @classmethod
    def from_config(cls, cfg: JobConfig, client: Optional[EngineClient] = None) -> "ElasticsearchLoader":
        return cls(
            index=cfg.connection.index,
            doc_type=cfg.connection.doc_type,
            client=client,
            connection=cfg.connection,
            write=cfg.write,
        )

    def open(self) -> None:
        if self._dispatcher is not None:
            raise StateError("Loader already opened")
        if self.client is None:
            self.client = create_client(self._connection)
        self._dispatcher = BulkDispatcher(
            self.client,
            self.write.concurrent_requests,
            on_failure=self._on_failure,
            release_client=self._owns_client,
        )
        self._batcher = BulkBatcher(
            self._dispatcher.submit,
            batch_size=self.write.batch_size,
            max_bytes=self.write.max_bulk_request_bytes,
            flush_interval=self.write.flush_interval,
        )
        self._batcher.start()

    def add(self, record: Record, target: Optional[IndexTarget] = None) -> None:
        if self._batcher is None:
            raise StateError("Loader not opened. Call .open() first.")
        self._batcher.add(record, target or IndexTarget(self.index, self.doc_type))

    def finalize(self) -> LoadResult:
        if self._batcher is None or self._dispatcher is None:
            raise StateError("Loader not opened. Call .open() first.")
        if self._result is not None:
            raise StateError("Loader already finalized")
        try:
            self._batcher.close()
        finally:
            self._result = self._dispatcher.close()
        logger.info(
            "wrote %d record(s) to '%s', %d failed",
            self._result.success_count,
            self.index,
            self._result.error_count,
        )
        if self._result.errors and self.write.raise_on_failure:
            raise PartialBulkFailure(self._result.errors)
        return self._result

    def close(self) -> None:
        """Release resources; drains outstanding requests if finalize() never ran."""
        if self._dispatcher is not None and self._result is None:
            assert self._batcher is not None
            try:
                self._batcher.close()
            finally:
                self._result = self._dispatcher.close()
        self._batcher = None
        self._dispatcher = None
        if self._owns_client:
            self.client = None
