# esbridge/core/job_runner.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, List, Sequence, TypeVar

from .config import JobConfig
from .extractor_base import PartitionedExtractor
from .loader_base import LoaderClient, LoadResult
from .models import Partition, Record

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JobRunner:
    """
    Orchestrates a job:
      - Read:  Extractor -> records (partitions read in parallel)
      - Write: records -> Loader (bulk batches, drained before returning)
      - Copy:  Extractor -> Loader (each read worker feeds the loader)
    Thread pool is applied per partition; partitions share no cursor state.
    """

    def __init__(self, cfg: JobConfig) -> None:
        self.cfg = cfg
        self._lock = threading.Lock()
        self._total_read = 0

    @property
    def total_read(self) -> int:
        with self._lock:
            return self._total_read

    # ---------------------- public entry points ----------------------

    def run_read(self, extractor: PartitionedExtractor) -> List[Record]:
        """Pipeline: Extract → records. Order is partition plan order, then scroll order."""
        extractor.open()
        try:
            partitions = list(extractor.partitions())
            chunks = self._map_partitions(
                partitions, lambda p: self._count(list(extractor.read_partition(p)))
            )
            return [rec for chunk in chunks for rec in chunk]
        finally:
            extractor.close()

    def run_write(self, records: Iterable[Record], loader: LoaderClient) -> LoadResult:
        """Pipeline: records → Loader."""
        loader.open()
        try:
            loader.add_batch(records)
            return loader.finalize()
        finally:
            loader.close()

    def run_extract_to_loader(
        self, extractor: PartitionedExtractor, loader: LoaderClient
    ) -> LoadResult:
        """Pipeline: Extract → Loader (no staging)."""
        extractor.open()
        loader.open()
        try:
            partitions = list(extractor.partitions())
            self._map_partitions(
                partitions, lambda p: self._count(loader.add_batch(extractor.read_partition(p)))
            )
            return loader.finalize()
        finally:
            # always close in reverse order
            loader.close()
            extractor.close()

    # ---------------------- internals ----------------------

    def _map_partitions(
        self, partitions: Sequence[Partition], fn: Callable[[Partition], T]
    ) -> List[T]:
        """Run fn over every partition on the pool; the first failure cancels what has not started."""
        workers = max(1, min(self.cfg.threading.workers, len(partitions)))
        logger.info("job '%s': %d partition(s) on %d worker(s)", self.cfg.name, len(partitions), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="esbridge-read") as pool:
            futures: List["Future[T]"] = [pool.submit(fn, p) for p in partitions]
            try:
                for fut in as_completed(futures):
                    fut.result()
            except BaseException:
                for fut in futures:
                    fut.cancel()
                raise
            return [fut.result() for fut in futures]

    def _count(self, value: T) -> T:
        n = value if isinstance(value, int) else len(value)  # type: ignore[arg-type]
        with self._lock:
            self._total_read += n
        return value
