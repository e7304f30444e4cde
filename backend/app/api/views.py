"""HTTP endpoints for channel views and their reply threads."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.api.deps import get_registry, get_view
from app.core.errors import (
    ChatApiStatusError,
    ChatApiTimeoutError,
    ChatTransportError,
    PermissionDeniedError,
    ViewClosedError,
)
from app.schemas import (
    Message,
    MessageCreate,
    MessageUpdate,
    ReactionRequest,
    ReactionSummary,
    ThreadForestRead,
    ViewCreate,
    ViewRead,
)
from app.services.sessions import ChannelSession, ViewRegistry
from murmur.realtime import TransportUnavailableError

router = APIRouter(prefix="/views", tags=["views"])


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except ViewClosedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ChatApiTimeoutError as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc)) from exc
    except ChatApiStatusError as exc:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except ChatTransportError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except TransportUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)
        ) from exc


def _message_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")


@router.post("", response_model=ViewRead, status_code=status.HTTP_201_CREATED)
async def open_view(
    payload: ViewCreate,
    registry: ViewRegistry = Depends(get_registry),
) -> ViewRead:
    """Open a channel view: join its push topic, then fetch and assemble the batch."""

    with _translate_errors():
        session = await registry.open_view(
            payload.channel_id, payload.viewer_id, access_token=payload.access_token
        )
    return session.describe()


@router.get("/{view_id}", response_model=ViewRead)
def read_view(session: ChannelSession = Depends(get_view)) -> ViewRead:
    return session.describe()


@router.delete("/{view_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_view(view_id: str, registry: ViewRegistry = Depends(get_registry)) -> Response:
    if not await registry.close_view(view_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="View not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{view_id}/threads", response_model=ThreadForestRead)
def read_threads(session: ChannelSession = Depends(get_view)) -> ThreadForestRead:
    """Return the reply forest with reactions grouped for the viewer."""

    with _translate_errors():
        return session.forest()


@router.post("/{view_id}/resync", response_model=ViewRead)
async def resync_view(session: ChannelSession = Depends(get_view)) -> ViewRead:
    with _translate_errors():
        await session.resync()
    return session.describe()


@router.post(
    "/{view_id}/messages", response_model=Message, status_code=status.HTTP_201_CREATED
)
async def send_message(
    payload: MessageCreate,
    session: ChannelSession = Depends(get_view),
) -> Message:
    with _translate_errors():
        return await session.send(payload.content, parent_id=payload.parent_id)


@router.patch("/{view_id}/messages/{message_id}", response_model=Message)
async def edit_message(
    message_id: str,
    payload: MessageUpdate,
    session: ChannelSession = Depends(get_view),
) -> Message:
    with _translate_errors():
        updated = await session.edit(message_id, payload.content)
    if updated is None:
        raise _message_not_found()
    return updated


@router.delete("/{view_id}/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: str,
    hard: bool = Query(False),
    session: ChannelSession = Depends(get_view),
) -> Response:
    with _translate_errors():
        accepted = await session.delete(message_id, hard=hard)
    if not accepted:
        raise _message_not_found()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{view_id}/messages/{message_id}/reactions", response_model=list[ReactionSummary])
async def toggle_reaction(
    message_id: str,
    payload: ReactionRequest,
    session: ChannelSession = Depends(get_view),
) -> list[ReactionSummary]:
    """Add the viewer's reaction, or remove it if it is already present."""

    with _translate_errors():
        summaries = await session.toggle_reaction(message_id, payload.emoji)
    if summaries is None:
        raise _message_not_found()
    return summaries
