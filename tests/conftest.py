# tests/conftest.py
import pytest
from fastapi.testclient import TestClient

from dealeval.api.http import app, build_services, get_services  # run tests from repo root
from tests.fixtures.listings import FakeGeocoder, FakeProvider, three_good_comps


@pytest.fixture
def provider():
    return FakeProvider(pages=[three_good_comps()])


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def services(provider, geocoder):
    # fresh in-memory database per test
    return build_services("sqlite://", provider=provider, geocoder=geocoder)


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()
