"""HTTP routers for the mail correlation service."""

from mailtrack.api.automations import router as automations_router
from mailtrack.api.credentials import router as credentials_router
from mailtrack.api.digests import router as digests_router
from mailtrack.api.emails import router as emails_router
from mailtrack.api.reconnect import router as reconnect_router
from mailtrack.api.threads import router as threads_router

ROUTERS = [
    emails_router,
    threads_router,
    digests_router,
    credentials_router,
    reconnect_router,
    automations_router,
]

__all__ = ["ROUTERS"]
