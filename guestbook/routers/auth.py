"""
Authentication router for OAuth sign-in.
"""

import logging
import secrets

import httpx
from fastapi import APIRouter, Cookie, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from guestbook.deps import SESSION_COOKIE, CurrentUserOptional, Store, get_client_ip
from guestbook.schemas import Identity
from guestbook.services import interactions
from guestbook.services.auth_providers import get_available_providers, get_oauth_provider
from guestbook.services.rate_limiter import auth_rate_limiter
from guestbook.services.store import StoreError
from guestbook.settings import settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])

STATE_COOKIE = "oauth_state"


def error_redirect(error: str) -> RedirectResponse:
    return RedirectResponse(url=f"/?error={error}", status_code=status.HTTP_302_FOUND)


@router.get("/providers")
async def providers():
    """OAuth providers configured for this deployment."""
    return {"providers": get_available_providers()}


@router.get("/me", response_model=Identity | None)
async def me(user: CurrentUserOptional):
    """Current identity, or null for anonymous visitors."""
    return user


# OAuth routes
@router.get("/oauth/{provider}")
async def oauth_start(
    request: Request,
    provider: str,
):
    """Start OAuth flow."""
    if not auth_rate_limiter.is_allowed(f"oauth:{get_client_ip(request)}"):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many sign-in attempts",
        )

    oauth_provider = get_oauth_provider(provider)
    if not oauth_provider:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"OAuth provider '{provider}' not available",
        )

    # Store state in cookie for verification
    state = secrets.token_urlsafe(32)
    response = RedirectResponse(
        url=oauth_provider.build_authorization_url(state),
        status_code=status.HTTP_302_FOUND,
    )
    response.set_cookie(
        key=STATE_COOKIE,
        value=state,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        max_age=600,  # 10 minutes
    )
    return response


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    request: Request,
    store: Store,
    provider: str,
    code: str = Query(...),
    state: str = Query(...),
):
    """Handle OAuth callback."""
    oauth_provider = get_oauth_provider(provider)
    if not oauth_provider:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"OAuth provider '{provider}' not available",
        )

    # Verify state
    stored_state = request.cookies.get(STATE_COOKIE)
    if not stored_state or not secrets.compare_digest(stored_state, state):
        return error_redirect("Invalid+OAuth+state")

    try:
        tokens = await oauth_provider.exchange_code(code)
        user_info = await oauth_provider.get_user_info(tokens["access_token"])
        user = await interactions.store_user(store, user_info)
        session_token = await store.start_session(user.id)
    except (httpx.HTTPError, KeyError) as e:
        logger.error(f"OAuth sign-in with {provider} failed: {e}")
        return error_redirect("Failed+to+sign+in.+Please+try+again.")
    except StoreError:
        return error_redirect("Failed+to+sign+in.+Please+try+again.")

    # Redirect with session cookie
    response = RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)
    response.set_cookie(
        key=SESSION_COOKIE,
        value=session_token,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        max_age=settings.session_expire_hours * 3600,
    )
    response.delete_cookie(STATE_COOKIE)
    return response


@router.post("/logout")
async def logout(
    store: Store,
    session_token: str | None = Cookie(default=None),
):
    """Handle logout."""
    if session_token:
        await store.end_session(session_token)

    response = RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)
    response.delete_cookie(SESSION_COOKIE)
    return response
