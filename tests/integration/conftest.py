"""Integration test configuration for the FastAPI application.

Requests go through the real app, routers and exception handlers; the
Supabase and Places dependencies are overridden with the in-memory fakes
from the top-level conftest.
"""

import pytest
from fastapi.testclient import TestClient

from antistatic.api.dependencies import get_places_client, get_supabase, reset_dependencies
from antistatic.api.main import app

from tests.conftest import OTHER_USER_ID, TEST_TOKEN

OTHER_TOKEN = "other-token"


@pytest.fixture
def client(fake_supabase, fake_places):
    """TestClient wired to the fakes. The lifespan is not run, so no scheduler starts."""
    fake_supabase.add_user(OTHER_TOKEN, OTHER_USER_ID, "other@example.com")
    app.dependency_overrides[get_supabase] = lambda: fake_supabase
    app.dependency_overrides[get_places_client] = lambda: fake_places

    yield TestClient(app)

    app.dependency_overrides.clear()
    reset_dependencies()


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {TEST_TOKEN}"}


@pytest.fixture
def other_headers() -> dict:
    return {"Authorization": f"Bearer {OTHER_TOKEN}"}


@pytest.fixture
def owned_location(fake_supabase, sample_location) -> dict:
    fake_supabase.seed("business_locations", sample_location)
    return sample_location
