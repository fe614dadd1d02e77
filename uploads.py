"""Turn an uploaded file into message text the chat UI can attach."""

from __future__ import annotations

import base64
from typing import Any, Dict

TEXT_EXTENSIONS = (".txt", ".md", ".js", ".ts", ".json", ".csv", ".py", ".html", ".css")


class FileTooLargeError(ValueError):
    """Upload exceeds MAX_FILE_SIZE."""


def _truncate(text: str, limit: int) -> tuple[str, bool]:
    return text[:limit], len(text) > limit


def extract_upload(
    file_name: str,
    file_type: str,
    data: bytes,
    *,
    max_file_size: int,
    max_content_length: int,
) -> Dict[str, Any]:
    """
    Build the `/upload` success payload for one file.

    Images are returned as a data URL, PDFs and text-like files as text capped
    at `max_content_length` characters, anything else as a short placeholder.
    """
    size = len(data)
    if size > max_file_size:
        raise FileTooLargeError(f"Maximum file size is {max_file_size // (1024 * 1024)}MB")

    file_type = file_type or "application/octet-stream"
    result: Dict[str, Any] = {
        "success": True,
        "fileName": file_name,
        "fileType": file_type,
        "size": size,
    }

    if file_type.startswith("image/"):
        encoded = base64.b64encode(data).decode("ascii")
        result["content"] = f"[Attached image: {file_name}]\nDescribe or analyze this image."
        result["base64"] = f"data:{file_type};base64,{encoded}"
        result["isImage"] = True
        return result

    if file_type == "application/pdf":
        text, truncated = _truncate(data.decode("utf-8", errors="replace"), max_content_length)
        result["content"] = f"[Attached PDF: {file_name}]\n{text}" + (
            "\n\n... (content truncated)" if truncated else ""
        )
        return result

    if file_type.startswith("text/") or file_name.lower().endswith(TEXT_EXTENSIONS):
        text, truncated = _truncate(data.decode("utf-8", errors="replace"), max_content_length)
        result["content"] = text + ("\n\n... (content truncated due to size)" if truncated else "")
        return result

    result["content"] = f"[Attached file: {file_name} ({file_type})]\nSize: {size} bytes"
    return result
