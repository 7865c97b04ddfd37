# esbridge/core/extractor_base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator, Sequence

from .base_stage import Stage
from .models import Partition, Record


class Extractor(Stage, ABC):
    """
    Abstract base for all extractors. Subclasses must implement iter_records().
    Reads records from the engine as a lazy, finite stream.
    """

    @abstractmethod
    def iter_records(self) -> Iterator[Record]:
        """Yield one record at a time (streaming, bounded memory)."""
        ...


class PartitionedExtractor(Extractor, ABC):
    """
    Extractor whose output splits into independent partitions.
    Partitions share no state, so a runner may read them on separate threads.
    """

    @abstractmethod
    def partitions(self) -> Sequence[Partition]:
        ...

    @abstractmethod
    def read_partition(self, partition: Partition) -> Iterator[Record]:
        ...

    def iter_records(self) -> Iterator[Record]:
        for partition in self.partitions():
            yield from self.read_partition(partition)


__all__ = ["Extractor", "PartitionedExtractor"]
