"""
Keyboard shortcut bindings that open overlays.
"""

from __future__ import annotations

from typing import Mapping, Optional

from gallery.navigator import OverlayKind

DEFAULT_BINDINGS: dict[str, str] = {"k": "search", "b": "browse"}


def resolve_shortcut(
    key: str,
    *,
    ctrl: bool = False,
    meta: bool = False,
    bindings: Mapping[str, str] | None = None,
) -> Optional[OverlayKind]:
    """Return the overlay bound to Ctrl/Cmd + ``key``, if any."""
    if not (ctrl or meta):
        return None
    target = (DEFAULT_BINDINGS if bindings is None else bindings).get(key.lower())
    if not target:
        return None
    return OverlayKind(target)
