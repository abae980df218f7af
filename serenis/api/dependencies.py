"""Dependency injection for API routes."""

from typing import Annotated, AsyncIterator, Optional

from fastapi import Depends, Header, Request

from serenis.core.exceptions import ConfigurationError
from serenis.services.flow_controller import FlowController


async def get_flow_controller(request: Request) -> AsyncIterator[FlowController]:
    """FastAPI dependency injection for the process-wide FlowController.

    The controller is created in the application lifespan and held on
    ``app.state``. Handlers run one at a time under its lock.
    """
    controller: Optional[FlowController] = getattr(request.app.state, "flow_controller", None)
    if controller is None:
        raise ConfigurationError("Flow controller not initialized")

    async with controller.lock:
        yield controller


def get_access_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    """Bearer token for cloud sync, or None for anonymous callers."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


# Type aliases for dependency injection
FlowControllerDep = Annotated[FlowController, Depends(get_flow_controller)]
AccessTokenDep = Annotated[Optional[str], Depends(get_access_token)]
