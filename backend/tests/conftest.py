from typing import Generator

import pytest
from fastapi.testclient import TestClient

from app.api import endpoints
from app.main import app

from factories import FakeCosign, full_results


@pytest.fixture()
def fake_cosign() -> FakeCosign:
    return FakeCosign(full_results())


@pytest.fixture()
def vulnerability_service():
    # no provider unless a test installs one
    return None


@pytest.fixture()
def client(fake_cosign, vulnerability_service) -> Generator[TestClient, None, None]:
    app.dependency_overrides[endpoints.get_cosign_client] = lambda: fake_cosign
    app.dependency_overrides[endpoints.get_vulnerability_service] = lambda: vulnerability_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
