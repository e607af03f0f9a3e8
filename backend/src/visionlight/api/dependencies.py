"""FastAPI dependencies for request authentication and shared services.

This module provides reusable FastAPI dependencies for:
- Unit of Work factory access
- Orchestrator and identity service access
- Bearer token authentication
"""

from typing import Annotated, Callable

from fastapi import Depends, Header, HTTPException, Request, status

from visionlight.services.identity import Identity, IdentityService
from visionlight.services.orchestrator import JobOrchestrator
from visionlight.uow import UnitOfWork


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.jobs.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_orchestrator(request: Request) -> JobOrchestrator:
    """Get the job orchestrator built during app lifespan."""
    return request.app.state.orchestrator


def get_identity_service(request: Request) -> IdentityService:
    return request.app.state.identity_service


async def get_current_identity(
    authorization: Annotated[str | None, Header()] = None,
    uow_factory=Depends(get_uow_factory),
    identity_service: IdentityService = Depends(get_identity_service),
) -> Identity:
    """Authenticate the request from its `Authorization: Bearer <token>` header.

    Raises:
        HTTPException: 401 Unauthorized if the header is missing or the session is invalid
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization[len("bearer ") :].strip()
    async with await uow_factory() as uow:
        identity = await identity_service.validate_token(uow, token)

    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
