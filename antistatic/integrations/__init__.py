"""Clients for the third-party APIs behind the app.

- google_places: Places web service (autocomplete, details, search, photos)
- gbp: Google Business Profile (token refresh, reviews, replies)
- instagram: Instagram Graph API (OAuth, reads, DMs, publishing)
- apify_places: Apify Google Places scraper for competitor data
- openai_chat: OpenAI chat completions
- whatsapp: WhatsApp Cloud API template messages
"""
