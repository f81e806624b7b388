"""
Filesystem primitives: read_file, list_files, write_file.

Failures come back as ``Error: ...`` strings so the calling entity can react.
"""

import math
import os
from typing import Any

from ..runtime.capability import Primitive, get_argument
from ..runtime.context import Context
from ...utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_CHARS = 50_000


def human_size(size: int) -> str:
    if size == 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    exp = min(int(math.log(size, 1024)), len(units) - 1)
    return f"{size / (1024 ** exp):.1f} {units[exp]}"


class ReadFile(Primitive):
    name = "read_file"
    description = "Read the contents of a text file"
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The path to the file to read"},
        },
        "required": ["path"],
    }

    def receive(self, message: Any, context: Context) -> str:
        path = get_argument(message, "path")
        if not path:
            return "Error: path is required"

        full_path = os.path.expanduser(path)
        if not os.path.exists(full_path):
            return f"Error: File not found: {path}"
        if not os.path.isfile(full_path):
            return f"Error: Not a file: {path}"

        limit = getattr(getattr(context.runtime, "config", None), "max_file_chars", DEFAULT_MAX_CHARS)
        try:
            with open(full_path, "r", encoding="utf-8", errors="replace") as f:
                content = f.read()
        except PermissionError:
            return f"Error: Permission denied: {path}"
        except OSError as e:
            return f"Error reading file: {e}"

        if len(content) > limit:
            return content[:limit] + f"\n\n... [truncated, file is {len(content)} characters]"
        return content


class ListFiles(Primitive):
    name = "list_files"
    description = "List files and directories in a given path"
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "The directory path to list (defaults to current directory)",
            },
        },
        "required": [],
    }

    def receive(self, message: Any, context: Context) -> str:
        path = get_argument(message, "path") or "."
        full_path = os.path.expanduser(path)

        if not os.path.exists(full_path):
            return f"Error: Path not found: {path}"
        if not os.path.isdir(full_path):
            return f"Error: Not a directory: {path}"

        try:
            names = sorted(n for n in os.listdir(full_path) if not n.startswith("."))
            entries = []
            for entry in names:
                entry_path = os.path.join(full_path, entry)
                if os.path.isdir(entry_path):
                    entries.append(f"{entry}/")
                else:
                    entries.append(f"{entry} ({human_size(os.path.getsize(entry_path))})")
        except PermissionError:
            return f"Error: Permission denied: {path}"
        except OSError as e:
            return f"Error listing directory: {e}"

        logger.debug("Listed directory", path=path, entries=len(entries))
        if not entries:
            return f"Directory is empty: {path}"
        return "\n".join(entries)


class WriteFile(Primitive):
    name = "write_file"
    description = "Write content to a file (creates or overwrites)"
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "The path to the file to write"},
            "content": {"type": "string", "description": "The content to write to the file"},
        },
        "required": ["path", "content"],
    }

    def receive(self, message: Any, context: Context) -> str:
        if not isinstance(message, dict):
            return "Error: path and content are required"
        path = message.get("path")
        content = message.get("content")
        if not path:
            return "Error: path is required"
        if content is None:
            return "Error: content is required"

        full_path = os.path.expanduser(path)
        try:
            directory = os.path.dirname(full_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(full_path, "w", encoding="utf-8") as f:
                f.write(str(content))
        except PermissionError:
            return f"Error: Permission denied: {path}"
        except OSError as e:
            return f"Error writing file: {e}"

        logger.debug("Wrote file", path=path, chars=len(str(content)))
        return f"Successfully wrote {len(str(content))} characters to {path}"
