"""
Paths — Canonical form for file references

Links, drift events and attribution spans arrive with file references in
mixed shapes: absolute paths, workspace-relative paths, file:// URIs,
Windows separators. Everything is reduced to one canonical form at the
store boundary and matched by equality afterwards.

Canonical form:
- workspace-relative POSIX path when the file is inside the workspace
- absolute POSIX path otherwise
"""

import posixpath
from pathlib import Path
from typing import Union
from urllib.parse import unquote

FILE_SCHEME = "file://"


def strip_scheme(uri: str) -> str:
    """Remove a file:// prefix (and URL escaping) if present."""
    if uri.startswith(FILE_SCHEME):
        path = unquote(uri[len(FILE_SCHEME):])
        # file:///C:/x -> C:/x
        if len(path) > 2 and path[0] == "/" and path[2] == ":":
            path = path[1:]
        return path
    return uri


def canonical_path(uri: Union[str, Path], root: Union[str, Path]) -> str:
    """
    Reduce a file reference to its canonical form relative to `root`.

    Examples (root=/work):
        /work/src/a.ts          -> src/a.ts
        file:///work/src/a.ts   -> src/a.ts
        ./src/../src/a.ts       -> src/a.ts
        src\\a.ts               -> src/a.ts
        /elsewhere/a.ts         -> /elsewhere/a.ts
    """
    text = strip_scheme(str(uri)).replace("\\", "/")
    root_text = str(root).replace("\\", "/").rstrip("/") or "/"

    if not posixpath.isabs(text) and not _has_drive(text):
        text = posixpath.join(root_text, text)
    text = posixpath.normpath(text)
    root_norm = posixpath.normpath(root_text)

    if text == root_norm:
        return "."
    prefix = root_norm if root_norm.endswith("/") else root_norm + "/"
    if text.startswith(prefix):
        return text[len(prefix):]
    return text


def absolute_path(canonical: str, root: Union[str, Path]) -> Path:
    """Resolve a canonical reference back to a filesystem path."""
    path = Path(canonical)
    if path.is_absolute():
        return path
    return Path(root) / path


def _has_drive(text: str) -> bool:
    return len(text) > 1 and text[1] == ":"
