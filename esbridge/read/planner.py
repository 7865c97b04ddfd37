# esbridge/read/planner.py
from __future__ import annotations

import logging
from typing import List, Sequence

from ..core.client_base import EngineClient
from ..core.models import Partition, Query, SliceSpec

logger = logging.getLogger(__name__)


class ReadPlanner:
    """
    Splits a read into partitions.

    Shard routing is the baseline: when the index has at least
    `desired_parallelism` shards every shard becomes a partition. With fewer
    shards the read is either one partition over the whole index
    (split_strategy="single") or `desired_parallelism` sliced-scroll
    partitions (split_strategy="slices"). Both keep partitions disjoint.
    """

    def __init__(self, client: EngineClient, split_strategy: str = "single") -> None:
        if split_strategy not in ("single", "slices"):
            raise ValueError(f"Unknown split strategy '{split_strategy}'")
        self._client = client
        self.split_strategy = split_strategy

    def plan(self, query: Query, index: str, desired_parallelism: int) -> List[Partition]:
        if desired_parallelism < 1:
            raise ValueError("desired_parallelism must be >= 1")

        shards = self._client.shard_count(index)
        if shards >= desired_parallelism:
            partitions = [
                Partition(
                    query=query,
                    index=index,
                    shard=shard,
                    estimated_count=self._client.count(query, index, shard=shard),
                )
                for shard in range(shards)
            ]
        elif self.split_strategy == "slices" and desired_parallelism > 1:
            total = self._client.count(query, index)
            partitions = [
                Partition(
                    query=query,
                    index=index,
                    slice=SliceSpec(id=i, max=desired_parallelism),
                    estimated_count=_share(total, i, desired_parallelism),
                )
                for i in range(desired_parallelism)
            ]
        else:
            partitions = [
                Partition(query=query, index=index, estimated_count=self._client.count(query, index))
            ]

        logger.info(
            "planned %d partition(s) for index '%s' (%d shard(s), desired %d, ~%d doc(s))",
            len(partitions),
            index,
            shards,
            desired_parallelism,
            self.estimated_size(partitions),
        )
        return partitions

    @staticmethod
    def estimated_size(partitions: Sequence[Partition]) -> int:
        return sum(p.estimated_count for p in partitions)


def _share(total: int, i: int, parts: int) -> int:
    """Even split of `total` over `parts`, remainder going to the first partitions."""
    base, extra = divmod(total, parts)
    return base + (1 if i < extra else 0)


__all__ = ["ReadPlanner"]
