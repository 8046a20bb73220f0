"""
Broker endpoints mounted next to the MCP SDK's OAuth routes, using Starlette.

Implements:
- IdP redirect target (/callback)
- Health check reporting credential store readiness
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response

from auth_broker.core.constants import SERVICE_VERSION

if TYPE_CHECKING:
    from .broker import AuthorizationBroker
    from .setup import AuthComponents


async def idp_callback(request: Request, broker: "AuthorizationBroker") -> Response:
    """IdP redirect after user sign-in."""
    params = request.query_params
    result = await broker.callback(
        code=params.get("code"),
        state=params.get("state"),
        error=params.get("error"),
        error_description=params.get("error_description"),
    )
    if result.is_redirect:
        return RedirectResponse(result.location or "", status_code=result.status_code)
    return PlainTextResponse(result.message or "", status_code=result.status_code)


async def health(request: Request, components: "AuthComponents") -> JSONResponse:
    """Report healthy once the credential store is initialized."""
    return JSONResponse(
        {
            "status": "healthy" if components.ready else "starting",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": SERVICE_VERSION,
        },
        status_code=200 if components.ready else 503,
    )
