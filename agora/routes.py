"""
Agora - HTTP Routes
=====================
Page and data endpoints around the session authenticator.

Route groups:
    /login, /register        - forms and their POST handlers
    /logout                  - destroys the session
    /datos                   - protected page (counts visits)
    /api/user, /get-data     - protected JSON: user profile + visit counter

Unauthenticated access to a protected route raises NotAuthenticated, which
the application turns into a redirect to /login (see main.py).
"""

import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

from agora.auth import AuthManager, Session
from agora.errors import DuplicateUser, InvalidCredentials, NotAuthenticated

logger = logging.getLogger(__name__)


def require_session(auth_manager: AuthManager, visit: bool = False):
    """
    Create a FastAPI dependency that resolves the request's session.

    Usage in routes:
        @router.get("/datos")
        async def datos(session: Session = Depends(require_session(auth, visit=True))): ...

    Args:
        auth_manager: The AuthManager that owns the sessions.
        visit:        Count each request as a protected-page visit.

    Returns:
        A FastAPI dependency function returning the Session.
    """
    async def _verify(request: Request) -> Session:
        return auth_manager.session_from_request(request, visit=visit)

    return _verify


def _is_authenticated(auth_manager: AuthManager, request: Request) -> bool:
    try:
        auth_manager.session_from_request(request)
    except NotAuthenticated:
        return False
    return True


def create_router(auth_manager: AuthManager, templates: Jinja2Templates) -> APIRouter:
    """
    Create the router with all page and data endpoints.

    Args:
        auth_manager: Handles registration, login and sessions.
        templates:    Jinja2 environment for the pages.

    Returns:
        Configured APIRouter.
    """
    router = APIRouter()

    visit = Depends(require_session(auth_manager, visit=True))
    authenticated = Depends(require_session(auth_manager))

    # =========================================================================
    # AUTH PAGES
    # =========================================================================

    @router.get("/")
    async def index():
        return RedirectResponse(url="/datos", status_code=303)

    @router.get("/login")
    async def login_page(request: Request):
        if _is_authenticated(auth_manager, request):
            return RedirectResponse(url="/datos", status_code=303)
        return templates.TemplateResponse(request, "login.html")

    @router.post("/login")
    async def login(request: Request, username: str = Form(...), password: str = Form(...)):
        """Open a session and set the cookie; failure renders login-error."""
        try:
            session = await auth_manager.login(username, password)
        except InvalidCredentials as e:
            return templates.TemplateResponse(
                request, "login-error.html", {"message": e.message}, status_code=e.status,
            )

        response = RedirectResponse(url="/datos", status_code=303)
        response.set_cookie(
            auth_manager.cookie_name,
            auth_manager.issue_token(session),
            httponly=True,
            samesite="lax",
        )
        return response

    @router.get("/register")
    async def register_page(request: Request):
        if _is_authenticated(auth_manager, request):
            return RedirectResponse(url="/datos", status_code=303)
        return templates.TemplateResponse(request, "register.html")

    @router.post("/register")
    async def register(
        request: Request,
        username: str = Form(...),
        password: str = Form(...),
        email: str = Form(""),
    ):
        """Create a user; failure renders register-error."""
        try:
            await auth_manager.register(username, password, email)
        except DuplicateUser as e:
            return templates.TemplateResponse(
                request, "register-error.html", {"message": e.message}, status_code=e.status,
            )
        except ValueError as e:
            return templates.TemplateResponse(
                request, "register-error.html", {"message": str(e)}, status_code=400,
            )
        return RedirectResponse(url="/", status_code=303)

    @router.get("/logout")
    async def logout(request: Request):
        auth_manager.logout(request.cookies.get(auth_manager.cookie_name))
        response = RedirectResponse(url="/", status_code=303)
        response.delete_cookie(auth_manager.cookie_name)
        return response

    # =========================================================================
    # PROTECTED ROUTES
    # =========================================================================

    @router.get("/datos")
    async def datos_page(request: Request, session: Session = visit):
        """Protected page: live catalog and chat, visit counter."""
        return templates.TemplateResponse(
            request, "datos.html", {"username": session.username, "counter": session.counter},
        )

    @router.get("/api/user")
    @router.get("/get-data")
    async def current_user(session: Session = authenticated):
        """Profile of the logged-in user (no password hash) and visit counter."""
        return await auth_manager.current_user(session)

    return router
