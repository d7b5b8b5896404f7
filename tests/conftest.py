import pytest

from fakes import FakeFetcher


@pytest.fixture
def fetcher():
    return FakeFetcher()
