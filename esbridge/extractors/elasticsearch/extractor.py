# esbridge/extractors/elasticsearch/extractor.py
from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Sequence

from esbridge.clients import create_client
from esbridge.core.client_base import DEFAULT_KEEP_ALIVE, EngineClient
from esbridge.core.config import ConnectionConfig, JobConfig
from esbridge.core.errors import StateError
from esbridge.core.extractor_base import PartitionedExtractor
from esbridge.core.models import Partition, Query, Record
from esbridge.read.planner import ReadPlanner
from esbridge.read.scroll import ScrollIterator

logger = logging.getLogger(__name__)


class ElasticsearchExtractor(PartitionedExtractor):
    """
    Bounded read of an index: the planner splits the query into partitions
    and each partition is streamed by its own ScrollIterator.
    Pass `client` to share an engine client you own; otherwise open() builds
    one from `connection` and close() releases it.
    """

    def __init__(
        self,
        index: str,
        query: Optional[Query] = None,
        *,
        client: Optional[EngineClient] = None,
        connection: Optional[ConnectionConfig] = None,
        page_size: int = 100,
        keep_alive: str = DEFAULT_KEEP_ALIVE,
        parallelism: int = 1,
        split_strategy: str = "single",
    ) -> None:
        self.index = index
        self.query = query or Query()
        self.page_size = page_size
        self.keep_alive = keep_alive
        self.parallelism = parallelism
        self.split_strategy = split_strategy
        self._connection = connection or ConnectionConfig(index=index)
        self.client: Optional[EngineClient] = client
        self._owns_client = client is None
        self._planner: Optional[ReadPlanner] = None
        self._partitions: Optional[List[Partition]] = None

    @classmethod
    def from_config(cls, cfg: JobConfig, client: Optional[EngineClient] = None) -> "ElasticsearchExtractor":
        return cls(
            index=cfg.connection.index,
            query=Query(expression=cfg.read.query, fields=tuple(cfg.read.fields)),
            client=client,
            connection=cfg.connection,
            page_size=cfg.read.page_size,
            keep_alive=cfg.read.scroll_keep_alive,
            parallelism=cfg.read.parallelism,
            split_strategy=cfg.read.split_strategy,
        )

    def open(self) -> None:
        """Initialize the engine client (unless one was passed in) and the planner."""
        if self.client is None:
            self.client = create_client(self._connection)
        self._planner = ReadPlanner(self.client, self.split_strategy)

    def partitions(self) -> Sequence[Partition]:
        """Plan once per run; later calls return the same partitions."""
        if self._planner is None:
            raise StateError("Extractor not opened. Call .open() first.")
        if self._partitions is None:
            self._partitions = self._planner.plan(self.query, self.index, self.parallelism)
        return self._partitions

    def estimated_count(self) -> int:
        return ReadPlanner.estimated_size(self.partitions())

    def read_partition(self, partition: Partition) -> Iterator[Record]:
        """Stream one partition; its cursor is released however iteration ends."""
        if self.client is None:
            raise StateError("Extractor not opened. Call .open() first.")
        scroll = ScrollIterator(self.client, partition, self.page_size, self.keep_alive)
        yield from scroll.iter_records()
        logger.debug("partition %s exhausted", partition.describe())

    def close(self) -> None:
        """Close the client if this extractor created it."""
        if self.client is not None and self._owns_client:
            self.client.close()
            self.client = None
        self._planner = None
        self._partitions = None
