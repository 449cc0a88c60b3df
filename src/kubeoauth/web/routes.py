# Web routes - login, callback, index, kubeconfig and health.
# Created: 2026-10-18

from __future__ import annotations

import html
import logging

from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse

from kubeoauth.errors import (
    LoginError,
    ResourceClientError,
    StateMismatch,
    StorePersistFailed,
)
from kubeoauth.manager import CredentialLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter()

USERNAME_SESSION_KEY = "username"

_INDEX_ANON = """<!DOCTYPE html>
<html><head><title>dj-kubelet</title></head><body>
<p>Hello there. This is dj-kubelet.</p>
<p><a href="/login">Log in with Spotify</a></p>
</body></html>"""

_INDEX_USER = """<!DOCTYPE html>
<html><head><title>dj-kubelet</title></head><body>
<p>Nice to have you here {username}! Let's rock and roll!</p>
<p>Namespace: <code>{namespace}</code> ({state})</p>
<p><a href="/kubeconfig">Download kubeconfig</a></p>
</body></html>"""

_LOGIN_FAILED = """<!DOCTYPE html>
<html><head><title>Login failed</title></head><body>
<p>Login failed: {reason}</p>
<p><a href="/login">Try again</a></p>
</body></html>"""


def _manager(request: Request) -> CredentialLifecycleManager:
    return request.app.state.manager


@router.get("/", response_class=HTMLResponse)
async def index(request: Request):
    username = request.session.get(USERNAME_SESSION_KEY)
    if not username:
        return HTMLResponse(_INDEX_ANON)

    provisioner = _manager(request).provisioner
    try:
        await provisioner.observe(username)
    except ResourceClientError as e:
        logger.warning("Could not read cluster state for %s: %s", username, e)
    tenant = provisioner.tenant(username)
    return HTMLResponse(
        _INDEX_USER.format(
            username=html.escape(username),
            namespace=html.escape(tenant.namespace),
            state=tenant.state.name.lower(),
        )
    )


@router.get("/health", response_class=PlainTextResponse)
async def health():
    return "ok"


@router.get("/login")
async def login(request: Request):
    url = _manager(request).begin_login(request.session)
    return RedirectResponse(url, status_code=302)


@router.get("/callback")
async def callback(
    request: Request,
    code: str = Query(""),
    state: str = Query(""),
):
    """Provider redirect target: exchange, provision, persist, then go home."""
    manager = _manager(request)
    try:
        result = await manager.complete_login(request.session, code, state)
    except StateMismatch as e:
        return HTMLResponse(_LOGIN_FAILED.format(reason=html.escape(str(e))), status_code=400)
    except LoginError as e:
        logger.warning("Login failed: %s", e)
        return HTMLResponse(_LOGIN_FAILED.format(reason=html.escape(str(e))), status_code=502)
    except StorePersistFailed as e:
        logger.error("Login could not persist credential: %s", e)
        return HTMLResponse(
            _LOGIN_FAILED.format(reason="could not store your credential"), status_code=500
        )

    request.session[USERNAME_SESSION_KEY] = result.tenant_id
    if not result.provisioning.ready:
        logger.warning(
            "Tenant %s logged in with provisioning at %s",
            result.tenant_id,
            result.provisioning.state.name,
        )
    return RedirectResponse(manager.settings.base_url, status_code=302)


@router.get("/kubeconfig", response_class=PlainTextResponse)
async def kubeconfig(request: Request):
    username = request.session.get(USERNAME_SESSION_KEY)
    if not username:
        return PlainTextResponse("Not logged in", status_code=401)
    try:
        return await _manager(request).kubeconfig(username)
    except ResourceClientError as e:
        logger.warning("Kubeconfig for %s unavailable: %s", username, e)
        return PlainTextResponse("Kubeconfig not available yet", status_code=503)
