from __future__ import annotations

import json
from typing import Callable, List

import pytest

from esbridge.clients.memory import InMemoryEngineClient
from esbridge.core.models import Batch, BulkItem, IndexTarget

SCIENTISTS = [
    "Einstein",
    "Darwin",
    "Copernicus",
    "Pasteur",
    "Curie",
    "Faraday",
    "Newton",
    "Bohr",
    "Galilei",
    "Maxwell",
]


def scientist_records(n: int) -> List[str]:
    return [json.dumps({"scientist": SCIENTISTS[i % len(SCIENTISTS)], "id": i}) for i in range(n)]


@pytest.fixture()
def engine():
    client = InMemoryEngineClient(number_of_shards=5)
    yield client
    client.close()


@pytest.fixture()
def records() -> Callable[[int], List[str]]:
    return scientist_records


@pytest.fixture()
def sample_index(engine) -> str:
    """1000 scientist documents in index 'beam', 100 per scientist."""
    items = tuple(
        BulkItem(record=rec, target=IndexTarget("beam", doc_id=str(i)))
        for i, rec in enumerate(scientist_records(1000))
    )
    response = engine.bulk(Batch(execution_id=0, items=items)).result()
    assert response.acked == 1000
    return "beam"
