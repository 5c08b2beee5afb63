"""
Antistatic - marketing back office for local businesses.

This package contains the modules behind the Antistatic web app:
- integrations: Google Places, Business Profile, Instagram Graph, Apify and OpenAI clients
- services: review replies, captions, competitor rankings, inbox, posts, onboarding
- scheduler: background publishing and competitor refresh jobs
- api: FastAPI application and routers
- config: Pydantic settings
- core: exceptions, logging and small shared helpers
"""

__version__ = "0.1.0"
