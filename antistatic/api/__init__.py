"""
Antistatic FastAPI Application.

This module contains the REST API for Antistatic:

- main: FastAPI application entry point and configuration
- routes/: API endpoint definitions organized by domain
- models: Pydantic request/response models
- dependencies: FastAPI dependency injection providers

API Structure:
- /health - Health, liveness and readiness checks
- /api/places, /api/business-location, /api/me - Onboarding
- /api/reputation - Reviews, AI replies and review requests
- /api/google/gbp, /api/gbp/oauth - Google Business Profile connect
- /api/competitors - Discovery and rankings
- /api/integrations/instagram, /api/social/instagram - Instagram
- /api/social-studio - Post calendar and captions
- /api/webhooks - Meta webhooks

Example:
    from antistatic.api.main import app

    # Run with: uvicorn antistatic.api.main:app --reload
"""

from antistatic.api.main import app

__all__ = ["app"]
