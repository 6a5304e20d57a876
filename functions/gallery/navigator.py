"""
Overlay navigation state for the gallery UI.

A ``ModalNavigator`` tracks which overlay is visible, the parameters it was
opened with, and the chain of overlays that ``back()`` can return to. Overlays
are typed values; the loose params bag sent by clients is only used to build
them, and unknown keys are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from enum import StrEnum
from typing import Any, Callable, ClassVar, Mapping, Optional, Union

logger = logging.getLogger(__name__)


class OverlayKind(StrEnum):
    NONE = "none"
    BROWSE = "browse"
    CATEGORIES = "categories"
    WALLPAPER = "wallpaper"
    SEARCH = "search"
    AUTH = "auth"

    @classmethod
    def _missing_(cls, value):
        # Generic name for the wallpaper detail overlay.
        if value == "item-detail":
            return cls.WALLPAPER
        return None


class BrowseSort(StrEnum):
    NEWEST = "newest"
    TRENDING = "trending"
    DOWNLOADS = "downloads"


class AuthMode(StrEnum):
    LOGIN = "login"
    REGISTER = "register"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _coerce(value: Any, enum_cls: type[StrEnum] | None) -> Any:
    if value is None or enum_cls is None:
        return value
    try:
        return enum_cls(value)
    except ValueError:
        logger.debug("Ignoring unknown %s value %r", enum_cls.__name__, value)
        return None


class _Overlay:
    """Shared params conversion for the overlay dataclasses."""

    kind: ClassVar[OverlayKind]
    _enum_fields: ClassVar[dict[str, type[StrEnum]]] = {}

    @classmethod
    def from_params(cls, params: Mapping[str, Any]):
        values = {}
        for f in fields(cls):
            for key in (f.name, _camel(f.name)):
                if key in params:
                    values[f.name] = _coerce(params[key], cls._enum_fields.get(f.name))
                    break
        return cls(**values)

    def params(self) -> dict[str, Any]:
        """Set fields keyed by their client-facing camelCase names."""
        return {
            _camel(f.name): getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class Closed(_Overlay):
    kind: ClassVar[OverlayKind] = OverlayKind.NONE


@dataclass(frozen=True)
class Browse(_Overlay):
    kind: ClassVar[OverlayKind] = OverlayKind.BROWSE
    _enum_fields: ClassVar[dict[str, type[StrEnum]]] = {"sort": BrowseSort}

    sort: Optional[BrowseSort] = None
    category_slug: Optional[str] = None


@dataclass(frozen=True)
class Categories(_Overlay):
    kind: ClassVar[OverlayKind] = OverlayKind.CATEGORIES


@dataclass(frozen=True)
class WallpaperDetail(_Overlay):
    kind: ClassVar[OverlayKind] = OverlayKind.WALLPAPER

    wallpaper_id: Optional[str] = None


@dataclass(frozen=True)
class Search(_Overlay):
    kind: ClassVar[OverlayKind] = OverlayKind.SEARCH

    query: Optional[str] = None


@dataclass(frozen=True)
class Auth(_Overlay):
    kind: ClassVar[OverlayKind] = OverlayKind.AUTH
    _enum_fields: ClassVar[dict[str, type[StrEnum]]] = {"auth_mode": AuthMode}

    auth_mode: Optional[AuthMode] = None


Overlay = Union[Closed, Browse, Categories, WallpaperDetail, Search, Auth]

CLOSED = Closed()

_OVERLAY_TYPES: dict[OverlayKind, type] = {
    OverlayKind.BROWSE: Browse,
    OverlayKind.CATEGORIES: Categories,
    OverlayKind.WALLPAPER: WallpaperDetail,
    OverlayKind.SEARCH: Search,
    OverlayKind.AUTH: Auth,
}

Listener = Callable[[dict], None]


def make_overlay(
    kind: OverlayKind | str, params: Mapping[str, Any] | None = None
) -> Overlay:
    """Build the typed overlay for ``kind`` from a params bag."""
    kind = OverlayKind(kind)
    if kind is OverlayKind.NONE:
        raise ValueError("'none' is not an openable overlay; use close()")
    return _OVERLAY_TYPES[kind].from_params(params or {})


class ModalNavigator:
    """
    Single source of truth for the visible overlay and its back-chain.

    ``close()`` also clears the history, so reopening after a close starts a
    fresh chain instead of resurfacing overlays from an earlier one.
    """

    def __init__(self) -> None:
        self._current: Overlay = CLOSED
        self._history: list[Overlay] = []
        self._listeners: list[Listener] = []

    @property
    def current(self) -> Overlay:
        return self._current

    @property
    def active(self) -> OverlayKind:
        return self._current.kind

    @property
    def params(self) -> dict[str, Any]:
        return self._current.params()

    @property
    def history(self) -> tuple[Overlay, ...]:
        return tuple(self._history)

    @property
    def is_open(self) -> bool:
        return not isinstance(self._current, Closed)

    def open(
        self, kind: OverlayKind | str, params: Mapping[str, Any] | None = None
    ) -> Overlay:
        return self.show(make_overlay(kind, params))

    def show(self, overlay: Overlay) -> Overlay:
        if isinstance(overlay, Closed):
            raise ValueError("Use close() to dismiss the active overlay")
        if self.is_open:
            self._history.append(self._current)
        self._current = overlay
        self._notify()
        return overlay

    def close(self) -> None:
        self._current = CLOSED
        self._history.clear()
        self._notify()

    def back(self) -> Overlay:
        if not self._history:
            self.close()
            return self._current
        self._current = self._history.pop()
        self._notify()
        return self._current

    def clear_history(self) -> None:
        self._history.clear()

    def snapshot(self) -> dict[str, Any]:
        return {"active": self.active.value, "params": self.params}

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with a fresh snapshot after every state change."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Navigator listener %r failed", listener)
