"""
HTTP routes for per-session overlay navigation.

Clients render whatever overlay the returned state names; every call returns
the full state so a client never has to track history itself.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path

from gallery.config import get_settings
from gallery.dependencies import get_navigator_registry
from gallery.navigator import ModalNavigator
from gallery.schemas import (
    HistoryEntry,
    NavigatorStateResponse,
    OpenOverlayRequest,
    ShortcutRequest,
    StatusResponse,
)
from gallery.sessions import NavigatorRegistry
from gallery.shortcuts import resolve_shortcut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/nav", tags=["navigation"])

SessionId = Annotated[
    str, Path(min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_-]+$")
]


def _state(session_id: str, navigator: ModalNavigator) -> NavigatorStateResponse:
    history = navigator.history
    return NavigatorStateResponse(
        session_id=session_id,
        active=navigator.active.value,
        params=navigator.params,
        history=[
            HistoryEntry(type=overlay.kind.value, params=overlay.params())
            for overlay in history
        ],
        can_go_back=bool(history),
    )


@router.get("/{session_id}", response_model=NavigatorStateResponse)
def get_state(
    session_id: SessionId,
    registry: NavigatorRegistry = Depends(get_navigator_registry),
):
    # Reads never register a session; unknown ids report the closed state.
    with registry.session(session_id, create=False) as navigator:
        return _state(session_id, navigator or ModalNavigator())


@router.post("/{session_id}/open", response_model=NavigatorStateResponse)
def open_overlay(
    payload: OpenOverlayRequest,
    session_id: SessionId,
    registry: NavigatorRegistry = Depends(get_navigator_registry),
):
    with registry.session(session_id) as navigator:
        navigator.open(payload.type, payload.params)
        return _state(session_id, navigator)


@router.post("/{session_id}/close", response_model=NavigatorStateResponse)
def close_overlay(
    session_id: SessionId,
    registry: NavigatorRegistry = Depends(get_navigator_registry),
):
    with registry.session(session_id) as navigator:
        navigator.close()
        return _state(session_id, navigator)


@router.post("/{session_id}/back", response_model=NavigatorStateResponse)
def go_back(
    session_id: SessionId,
    registry: NavigatorRegistry = Depends(get_navigator_registry),
):
    with registry.session(session_id) as navigator:
        navigator.back()
        return _state(session_id, navigator)


@router.post("/{session_id}/clear-history", response_model=NavigatorStateResponse)
def clear_history(
    session_id: SessionId,
    registry: NavigatorRegistry = Depends(get_navigator_registry),
):
    with registry.session(session_id) as navigator:
        navigator.clear_history()
        return _state(session_id, navigator)


@router.post("/{session_id}/shortcut", response_model=NavigatorStateResponse)
def press_shortcut(
    payload: ShortcutRequest,
    session_id: SessionId,
    registry: NavigatorRegistry = Depends(get_navigator_registry),
):
    kind = resolve_shortcut(
        payload.key,
        ctrl=payload.ctrl,
        meta=payload.meta,
        bindings=get_settings().shortcut_bindings,
    )
    with registry.session(session_id) as navigator:
        if kind is not None:
            navigator.open(kind)
        return _state(session_id, navigator)


@router.delete("/{session_id}", response_model=StatusResponse)
def end_session(
    session_id: SessionId,
    registry: NavigatorRegistry = Depends(get_navigator_registry),
):
    if registry.discard(session_id):
        logger.debug("Discarded navigator for session %s", session_id)
    return StatusResponse(status="ok")
