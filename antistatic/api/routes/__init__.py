"""API route modules."""

from antistatic.api.routes.business import router as business_router
from antistatic.api.routes.competitors import router as competitors_router
from antistatic.api.routes.gbp import router as gbp_router
from antistatic.api.routes.health import router as health_router
from antistatic.api.routes.instagram import router as instagram_router
from antistatic.api.routes.places import router as places_router
from antistatic.api.routes.reputation import router as reputation_router
from antistatic.api.routes.social_studio import router as social_studio_router
from antistatic.api.routes.webhooks import router as webhooks_router

__all__ = [
    "business_router",
    "competitors_router",
    "gbp_router",
    "health_router",
    "instagram_router",
    "places_router",
    "reputation_router",
    "social_studio_router",
    "webhooks_router",
]
