from __future__ import annotations

from typing import Optional

__all__: list[str] = ["decode_text", "decode_strict"]


def decode_text(data: bytes) -> str:
    """
    Decode a ``text/*`` payload as UTF-8, dropping undecodable bytes.

    Args:
        data: Raw file bytes.

    Returns:
        The decoded text.  Undecodable bytes are replaced and the replacement
        character stripped so no visual artefact remains.
    """
    text = data.decode("utf-8", errors="replace")
    return text.replace("\ufffd", "")


def decode_strict(data: bytes) -> Optional[str]:
    """Best-effort decode for unknown media types.

    Returns *None* when the payload is not usable text: invalid UTF-8,
    embedded NUL bytes (binary content) or nothing but whitespace.
    """
    if b"\x00" in data:
        return None
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    return text if text.strip() else None
