"""Shared fixtures: packaged dictionary and an in-memory backend. No database needed."""

from __future__ import annotations

from pathlib import Path

import pytest

from asset_geo.cascade import CascadePropagator
from asset_geo.dictionary import load_dictionary
from asset_geo.resolver import Resolver
from asset_geo.service import AssetService
from asset_geo.standardize import Standardizer
from asset_geo.stores import MemoryBackend
from asset_geo.sync import ConsistencySynchronizer

DATA_DIR = Path(__file__).resolve().parent.parent / "data"


@pytest.fixture(scope="session")
def dictionary():
    return load_dictionary(DATA_DIR / "provinces.json", DATA_DIR / "counties.json")


@pytest.fixture(scope="session")
def standardizer(dictionary):
    return Standardizer(dictionary)


@pytest.fixture(scope="session")
def resolver(dictionary, standardizer):
    return Resolver(dictionary, standardizer)


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def synchronizer(backend, resolver):
    return ConsistencySynchronizer(backend, resolver)


@pytest.fixture
def propagator(backend):
    # Small batches so multi-batch alignment is exercised
    return CascadePropagator(backend, batch_size=2)


@pytest.fixture
def service(backend, resolver, synchronizer, propagator):
    return AssetService(backend, resolver, synchronizer, propagator)
