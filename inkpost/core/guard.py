# inkpost/core/guard.py
"""
Route table and the authentication guard run before every navigation.
"""
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Pattern, Tuple
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.routing import compile_path

from inkpost.core.session_store import SessionStore
from inkpost.schemas.auth import AuthSession

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
LOGIN_PATH = "/login"


@dataclass(frozen=True)
class RouteSpec:
    name: str
    path: str
    requires_auth: bool = False


ROUTES: List[RouteSpec] = [
    RouteSpec("home", "/"),
    RouteSpec("posts", "/posts"),
    RouteSpec("post-detail", "/post/{slug}"),
    RouteSpec("edit-post", "/post/{slug}/edit", requires_auth=True),
    RouteSpec("login", "/login"),
    RouteSpec("signup", "/signup"),
    RouteSpec("dashboard", "/dashboard", requires_auth=True),
    RouteSpec("my-posts", "/my-posts", requires_auth=True),
    RouteSpec("profile", "/profile", requires_auth=True),
    RouteSpec("account", "/account", requires_auth=True),
    RouteSpec("not-found", "/{path:path}"),
]


class RouteTable:
    """Ordered routes; the first whose pattern matches the whole path wins."""

    def __init__(self, routes: List[RouteSpec]):
        self.routes: List[Tuple[Pattern, RouteSpec]] = []
        for route in routes:
            regex, _, _ = compile_path(route.path)
            self.routes.append((regex, route))

    def match(self, path: str) -> Optional[RouteSpec]:
        for regex, route in self.routes:
            if regex.match(path):
                return route
        return None

    def get(self, name: str) -> RouteSpec:
        for _, route in self.routes:
            if route.name == name:
                return route
        raise KeyError(name)


ROUTE_TABLE = RouteTable(ROUTES)


@dataclass
class NavigationDecision:
    allowed: bool
    redirect_to: Optional[str] = None


def login_redirect(full_path: str) -> str:
    return f"{LOGIN_PATH}?{urlencode({'redirect': full_path})}"


async def resolve_navigation(
    store: SessionStore,
    path: str,
    query: str = "",
    route_table: RouteTable = ROUTE_TABLE,
) -> NavigationDecision:
    """
    Decide whether a navigation to `path` may proceed.

    Waits for the store to finish initializing first. Protected routes
    without a signed-in user send the visitor to the login page, with the
    intended path (query string included) kept for the redirect back.
    """
    if store.loading:
        await store.initialize()

    route = route_table.match(path)
    if route is not None and route.requires_auth and store.user is None:
        full_path = f"{path}?{query}" if query else path
        return NavigationDecision(allowed=False, redirect_to=login_redirect(full_path))
    return NavigationDecision(allowed=True)


def token_from_request(request: Request) -> Optional[str]:
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return request.cookies.get(ACCESS_COOKIE)


def set_auth_cookies(response: Response, session: AuthSession) -> None:
    response.set_cookie(ACCESS_COOKIE, session.access_token, max_age=session.expires_in, httponly=True, samesite="lax")
    if session.refresh_token:
        response.set_cookie(REFRESH_COOKIE, session.refresh_token, httponly=True, samesite="lax")


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)


_STATIC_PREFIX = re.compile(r"^/(storage|docs|redoc|openapi\.json)(/|$)")


class AuthGuardMiddleware(BaseHTTPMiddleware):
    """
    Gives every request its own SessionStore (`request.state.auth`) and
    applies `resolve_navigation` before the endpoint runs.
    """

    def __init__(self, app, route_table: RouteTable = ROUTE_TABLE):
        super().__init__(app)
        self.route_table = route_table

    async def dispatch(self, request: Request, call_next):
        token = token_from_request(request)
        store = SessionStore(
            request.app.state.gateway,
            access_token=token,
            refresh_token=request.cookies.get(REFRESH_COOKIE),
        )
        request.state.auth = store

        try:
            if _STATIC_PREFIX.match(request.url.path):
                return await call_next(request)

            decision = await resolve_navigation(store, request.url.path, request.url.query, self.route_table)
            if not decision.allowed:
                logger.info(f"Redirecting unauthenticated request for {request.url.path} to login")
                return RedirectResponse(decision.redirect_to, status_code=302)

            response = await call_next(request)

            # The access token was renewed from the refresh token while initializing
            if store.session is not None and token and store.session.access_token != token \
                    and ACCESS_COOKIE not in response.headers.get("set-cookie", ""):
                set_auth_cookies(response, store.session)
            return response
        finally:
            store.close()
