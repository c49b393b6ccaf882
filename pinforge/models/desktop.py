"""Typed fields for a freedesktop ``.desktop`` launcher entry."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

# Reverse-DNS style: dot-separated, non-empty segments. It becomes a file
# name under share/applications, so no separators or empty segments.
APP_ID_PATTERN = r"^[A-Za-z0-9_-]+(\.[A-Za-z0-9_-]+)*$"


class DesktopAction(BaseModel):
    """An additional launcher action (``[Desktop Action <id>]`` group)."""

    model_config = ConfigDict(frozen=True)

    action_id: str
    name: str
    exec_args: tuple[str, ...] = ()


class DesktopEntry(BaseModel):
    """All values substituted into the generated desktop descriptor.

    ``app_id`` names the installed file (``<app_id>.desktop``);
    ``exec_command`` is the program launched by ``Exec``/``TryExec``.
    """

    model_config = ConfigDict(frozen=True)

    app_id: str = Field(pattern=APP_ID_PATTERN)
    name: str
    exec_command: str
    icon: str
    exec_args: tuple[str, ...] = ()
    generic_name: str = ""
    comment: str = ""
    startup_notify: bool = True
    try_exec: bool = True
    categories: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    mime_types: tuple[str, ...] = ()
    actions: tuple[DesktopAction, ...] = ()
