"""
Configuration Management.

Settings are loaded with Pydantic Settings from (in order of precedence):
1. Environment variables
2. .env file
3. Default values

All sensitive values (API keys, app secrets, tokens) are SecretStr fields and
never committed to source control.

Example:
    from antistatic.config import get_settings

    settings = get_settings()
    redirect_uri = settings.instagram_redirect_uri
"""

from antistatic.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
