"""The ``file://`` resource: read files or list directories on the local machine."""

from __future__ import annotations

import json
import logging
import os
from typing import List

from dashscope_mcp.errors import FilesystemError
from dashscope_mcp.server.schema import ResourceContents, ResourceDefinition

logger = logging.getLogger(__name__)

FILE_SCHEME = "file://"

FILE_SYSTEM_RESOURCE = ResourceDefinition(
    uri=FILE_SCHEME,
    name="File system",
    description="Access the local file system",
    mime_type="text/plain",
)


def uri_to_path(uri: str) -> str:
    """``file:///tmp/x`` -> ``/tmp/x``. The prefix is stripped verbatim, no percent-decoding."""
    return uri[len(FILE_SCHEME):]


def read_file(path: str) -> str:
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read()
    except (OSError, ValueError) as exc:
        raise FilesystemError(path, _reason(exc)) from exc


def list_files(directory: str) -> List[str]:
    try:
        return sorted(os.listdir(directory))
    except (OSError, ValueError) as exc:
        raise FilesystemError(directory, _reason(exc)) from exc


def read_file_resource(uri: str) -> ResourceContents:
    """
    Read a ``file://`` URI.

    A directory yields a JSON document ``{"files": [...]}``; a regular file
    yields its text.

    Raises:
        FilesystemError: if the path cannot be stat'ed, listed or read.
    """
    path = uri_to_path(uri)
    try:
        is_dir = os.path.isdir(path)
        if not is_dir:
            os.stat(path)
    except (OSError, ValueError) as exc:
        raise FilesystemError(path, _reason(exc)) from exc

    if is_dir:
        files = list_files(path)
        logger.debug("listed %d entries in %s", len(files), path)
        return ResourceContents(
            uri=uri,
            mime_type="application/json",
            text=json.dumps({"files": files}, indent=2, ensure_ascii=False),
        )

    return ResourceContents(uri=uri, mime_type="text/plain", text=read_file(path))


def _reason(exc: Exception) -> str:
    if isinstance(exc, OSError) and exc.strerror:
        return exc.strerror
    return str(exc)
