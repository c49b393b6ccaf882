"""Desktop-integration file rendering.

``render_desktop_entry`` turns a typed ``DesktopEntry`` into a freedesktop
``.desktop`` file. Values are escaped per the Desktop Entry Specification
(string escapes, ``;`` inside lists, quoting rules for ``Exec`` arguments),
so no field value can inject extra keys or groups.

``render_fonts_conf`` produces the fontconfig file exported to the build via
``FONTCONFIG_FILE`` so bundled fonts resolve without system installation.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path
from xml.sax.saxutils import escape as xml_escape

from pinforge.models.desktop import DesktopEntry

_FIELD_CODE = re.compile(r"^%[fFuUdDnNickvm]$")
_EXEC_RESERVED = set(" \t\n\"'\\><~|&;$*?#()`")
_ACTION_ID = re.compile(r"^[A-Za-z0-9-]+$")
_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def _check(value: str) -> str:
    if _CONTROL.search(value):
        raise ValueError(f"Control character in desktop entry value: {value!r}")
    return value


def escape_string(value: str) -> str:
    """Escape a ``string``/``localestring`` value."""
    _check(value)
    out = (
        value.replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace("\t", "\\t")
        .replace("\r", "\\r")
    )
    if out.startswith(" "):
        out = "\\s" + out[1:]
    return out


def escape_list(values: Iterable[str]) -> str:
    """Escape a ``;``-separated list value, with the trailing separator."""
    items = [escape_string(v).replace(";", "\\;") for v in values]
    return "".join(f"{item};" for item in items)


def quote_exec_arg(arg: str) -> str:
    """Quote one ``Exec`` argument; field codes pass through untouched."""
    _check(arg)
    if _FIELD_CODE.match(arg):
        return arg
    arg = arg.replace("%", "%%")
    if not arg or any(ch in _EXEC_RESERVED for ch in arg):
        inner = "".join(f"\\{ch}" if ch in '"`$\\' else ch for ch in arg)
        return f'"{inner}"'
    return arg


def exec_line(command: str, args: Iterable[str]) -> str:
    """Build an ``Exec`` value, then apply general string escaping."""
    return escape_string(" ".join(quote_exec_arg(a) for a in (command, *args)))


def render_desktop_entry(entry: DesktopEntry) -> str:
    """Render *entry* as the text of a ``.desktop`` file."""
    lines = [
        "[Desktop Entry]",
        "Version=1.0",
        "Type=Application",
        f"Name={escape_string(entry.name)}",
    ]
    if entry.generic_name:
        lines.append(f"GenericName={escape_string(entry.generic_name)}")
    if entry.comment:
        lines.append(f"Comment={escape_string(entry.comment)}")
    if entry.try_exec:
        lines.append(f"TryExec={escape_string(entry.exec_command)}")
    lines.append(f"StartupNotify={'true' if entry.startup_notify else 'false'}")
    lines.append(f"Exec={exec_line(entry.exec_command, entry.exec_args)}")
    lines.append(f"Icon={escape_string(entry.icon)}")
    if entry.categories:
        lines.append(f"Categories={escape_list(entry.categories)}")
    if entry.keywords:
        lines.append(f"Keywords={escape_list(entry.keywords)}")
    if entry.mime_types:
        lines.append(f"MimeType={escape_list(entry.mime_types)}")
    if entry.actions:
        for action in entry.actions:
            if not _ACTION_ID.match(action.action_id):
                raise ValueError(f"Invalid desktop action id: {action.action_id!r}")
        lines.append(f"Actions={escape_list(a.action_id for a in entry.actions)}")

    for action in entry.actions:
        lines += [
            "",
            f"[Desktop Action {action.action_id}]",
            f"Exec={exec_line(entry.exec_command, action.exec_args)}",
            f"Name={escape_string(action.name)}",
        ]
    return "\n".join(lines) + "\n"


def render_fonts_conf(font_dirs: Iterable[Path]) -> str:
    """Render a fontconfig file that includes the default config plus *font_dirs*."""
    dirs = "\n".join(f"  <dir>{xml_escape(str(d))}</dir>" for d in font_dirs)
    return (
        '<?xml version="1.0"?>\n'
        '<!DOCTYPE fontconfig SYSTEM "urn:fontconfig:fonts.dtd">\n'
        "<fontconfig>\n"
        '  <include ignore_missing="yes">/etc/fonts/fonts.conf</include>\n'
        f"{dirs}\n"
        "</fontconfig>\n"
    )
