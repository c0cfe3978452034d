from __future__ import annotations
from reward_tracker.backends.base import Backend
from reward_tracker.config import Settings

def create_backend(settings: Settings) -> Backend:
    """Pick the backend from the scheme of BACKEND_URL."""
    settings.require_backend()
    url = settings.backend_url
    if url.startswith(("http://", "https://")):
        from reward_tracker.backends.hosted import HostedBackend
        return HostedBackend(url, settings.backend_api_key, timeout=settings.fetch_timeout)
    from reward_tracker.backends.sql import SqlBackend
    return SqlBackend(
        url,
        settings.backend_api_key,
        access_ttl_min=settings.access_ttl_min,
        refresh_ttl_min=settings.refresh_ttl_min,
    )
