"""
FastAPI dependencies for the store, the session identity, and rate limits.
"""

from typing import Annotated

from fastapi import Cookie, Depends, HTTPException, Request, WebSocket, status

from guestbook.schemas import Identity, ProfanityClassifier
from guestbook.services.rate_limiter import post_rate_limiter
from guestbook.services.store import GuestbookStore

SESSION_COOKIE = "session_token"


def get_store(request: Request) -> GuestbookStore:
    """The store built during application startup."""
    return request.app.state.store


def get_classifier(request: Request) -> ProfanityClassifier:
    return request.app.state.classifier


# Type aliases for app-scoped collaborators
Store = Annotated[GuestbookStore, Depends(get_store)]
Classifier = Annotated[ProfanityClassifier, Depends(get_classifier)]


async def resolve_identity(store: GuestbookStore, session_token: str | None) -> Identity | None:
    """Map a session cookie to the signed-in identity, if still valid."""
    if not session_token:
        return None
    user = await store.get_user_by_session(session_token)
    return user.to_identity() if user else None


async def get_current_user_optional(
    store: Store,
    session_token: str | None = Cookie(default=None),
) -> Identity | None:
    """Get current identity from session cookie (None for anonymous visitors)."""
    return await resolve_identity(store, session_token)


async def get_current_user(
    user: Annotated[Identity | None, Depends(get_current_user_optional)],
) -> Identity:
    """Get current identity from session cookie (raises 401 if not signed in)."""
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


# Type alias for authenticated user dependency
CurrentUser = Annotated[Identity, Depends(get_current_user)]
CurrentUserOptional = Annotated[Identity | None, Depends(get_current_user_optional)]


def get_client_ip(request: Request | WebSocket) -> str:
    """Get client IP for rate limiting."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def enforce_post_rate_limit(request: Request, user: CurrentUserOptional) -> None:
    """Throttle writes per identity, or per client IP for anonymous visitors."""
    key = f"user:{user.id}" if user else f"ip:{get_client_ip(request)}"
    if not post_rate_limiter.is_allowed(key):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please slow down.",
        )


PostRateLimit = Depends(enforce_post_rate_limit)
