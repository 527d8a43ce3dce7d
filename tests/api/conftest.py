"""Shared fixtures for API tests."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from catalog_api.main import create_app


@pytest.fixture
def app(resources) -> FastAPI:
    """Application bound to the test resources."""
    return create_app(resources)


@pytest.fixture
def client(app) -> TestClient:
    """Create test client without authentication."""
    return TestClient(app)


@pytest.fixture
def auth_client(app, admin_token) -> TestClient:
    """Create test client with an admin token."""
    return TestClient(app, headers={"Authorization": f"Bearer {admin_token}"})


@pytest.fixture
def viewer_client(app, viewer_token) -> TestClient:
    """Create test client with a token lacking the admin role."""
    return TestClient(app, headers={"Authorization": f"Bearer {viewer_token}"})
