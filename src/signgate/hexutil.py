"""
Hex and text input helpers (small, focused)

Goals
- Centralize hex and fingerprint validation with clear error messages.
- Accept request payloads that are either base64 or plain text.
- Provide a convenient "file or text" reader for CLI flags.
"""
from __future__ import annotations

import base64
import binascii
import re
from typing import Optional


_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_FINGERPRINT_RE = re.compile(r"^[0-9a-fA-F]{8}$")


def is_hex_str(s: str) -> bool:
    return bool(_HEX_RE.fullmatch(s or ""))


def is_fingerprint(s: str) -> bool:
    """True for a 4-byte key fingerprint written as 8 hex digits."""
    return bool(_FINGERPRINT_RE.fullmatch(s or ""))


def parse_hex(name: str, s: Optional[str], length: Optional[int] = None) -> bytes:
    """Parse a hex string into bytes with optional fixed-length validation.

    Args:
        name: human-readable name for error messages.
        s: hex string (case-insensitive, even length required).
        length: expected length in bytes (optional). If set, enforce exact length.

    Returns:
        Decoded bytes.
    """
    if s is None:
        raise ValueError(f"{name} is required")
    s = s.strip()
    if not is_hex_str(s) or len(s) % 2 != 0:
        raise ValueError(f"Invalid hex for {name}")
    b = binascii.unhexlify(s)
    if length is not None and len(b) != length:
        raise ValueError(f"{name} must be {length} bytes (got {len(b)})")
    return b


def decode_text_payload(payload: str) -> str:
    """Return the text carried by ``payload``.

    Request bodies arrive base64-encoded; plain text (which is never valid
    base64 once it contains spaces or colons) is passed through unchanged.
    """
    compact = "".join(payload.split())
    try:
        raw = base64.b64decode(compact, validate=True)
        return raw.decode("utf-8")
    except ValueError:  # binascii.Error and UnicodeDecodeError both derive from it
        return payload


def file_or_text(name: str, text_value: Optional[str], file_path: Optional[str]) -> str:
    """Read text from an explicit value or from a file.

    Precedence: text_value if provided; otherwise file_path is used.
    Raises if neither is provided.
    """
    if text_value:
        return text_value
    if file_path:
        with open(file_path, 'rt') as f:
            return f.read()
    raise ValueError(f"{name} required")
