"""
Antistatic Test Suite.

This package contains all tests for the Antistatic API:

- unit/: Integrations (with httpx.MockTransport), services and the scheduler
- integration/: API endpoint tests through the FastAPI app
- conftest.py: Shared fixtures, including the in-memory Supabase fake

Run tests with: pytest
Run only the API tests with: pytest tests/integration
"""
