"""
Shared fixtures for search service tests.
"""

import pytest

from service_search.app.caching.cache_store import CacheStore
from service_search.app.domain.models import Category, UserAccount
from service_search.app.store.memory import InMemoryCatalogStore
from service_search.tests.factories import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheStore(clock=clock)


@pytest.fixture
def categories():
    return [
        Category(id="home", name="Home Services", description="Repairs and maintenance"),
        Category(id="legal", name="Legal", description="Lawyers and notaries"),
    ]


@pytest.fixture
def users():
    return [
        UserAccount(id="user-1", verified=True),
        UserAccount(id="user-2", verified=False),
    ]


@pytest.fixture
def store(categories, users):
    return InMemoryCatalogStore(categories=categories, users=users)
