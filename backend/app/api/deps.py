"""FastAPI dependencies for the API layer."""

from fastapi import Depends, HTTPException, Request, status

from app.services.sessions import ChannelSession, ViewRegistry


def get_registry(request: Request) -> ViewRegistry:
    """Return the view registry created at application startup."""

    registry = getattr(request.app.state, "views", None)
    if registry is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Realtime gateway is not ready",
        )
    return registry


def get_view(view_id: str, registry: ViewRegistry = Depends(get_registry)) -> ChannelSession:
    """Resolve an open channel view or raise an HTTP 404 error."""

    session = registry.get(view_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="View not found")
    return session
