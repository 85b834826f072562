"""
Multimodal payload encoding for completion requests.

Architectural role:
- Convert opaque binary inputs (images, documents, audio) into transport-neutral
  `BinaryPart` values with a detected media type.
- Run before dispatch; encoding problems never reach the orchestrator.

Processing lifecycle:
1. Reject empty payloads.
2. Data-URI envelopes (`data:<mime>[;base64],<payload>`) are unpacked and the
   media type is taken from the header.
3. Raw bytes are sniffed by signature (documents/audio) and by Pillow's image
   identification; the declared file name extension is a fallback.
4. Enforce recognized media types and the size limit.
5. Return a `BinaryPart` whose `data` is canonical base64 text.

Error handling strategy:
- Failures are returned as `EncodingError` values, never raised.

Determinism considerations:
- Pure function of its inputs. No filesystem or network access.
"""

import base64
import binascii
import io
import os
import re
from dataclasses import dataclass
from urllib.parse import unquote_to_bytes

from PIL import Image, UnidentifiedImageError

from gentask.core.task_types import BinaryPart


# ============================================================
# CONFIG
# ============================================================

MAX_PAYLOAD_MB = 10
MAX_PAYLOAD_BYTES = MAX_PAYLOAD_MB * 1024 * 1024

RECOGNIZED_MEDIA_TYPES = {
    "image/png", "image/jpeg", "image/webp", "image/gif",
    "image/bmp", "image/tiff", "image/heic", "image/heif",
    "application/pdf",
    "audio/wav", "audio/webm", "audio/mpeg", "audio/ogg", "audio/mp4",
    "text/plain", "text/csv",
}

EXTENSION_MEDIA_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".pdf": "application/pdf",
    ".wav": "audio/wav",
    ".webm": "audio/webm",
    ".mp3": "audio/mpeg",
    ".ogg": "audio/ogg",
    ".m4a": "audio/mp4",
    ".txt": "text/plain",
    ".csv": "text/csv",
}

# Aliases browsers and recorders put in data-URI headers.
MEDIA_TYPE_ALIASES = {
    "image/jpg": "image/jpeg",
    "audio/x-wav": "audio/wav",
    "audio/wave": "audio/wav",
    "audio/mp3": "audio/mpeg",
    "audio/x-m4a": "audio/mp4",
}

EMPTY_PAYLOAD = "empty-payload"
UNDETECTED_TYPE = "undetected-type"
UNSUPPORTED_TYPE = "unsupported-type"
PAYLOAD_TOO_LARGE = "payload-too-large"
MALFORMED_ENVELOPE = "malformed-envelope"

_DATA_URI_HEADER_RE = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(?:;[^;,]*)*)$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class EncodingError:
    """Reason a payload could not be encoded."""

    code: str
    message: str = ""


# ============================================================
# PUBLIC ENTRYPOINT
# ============================================================

def encode(raw: bytes, declared_name: str | None = None):
    """
    Encode one binary input as a request part.

    Returns:
    - `BinaryPart` on success.
    - `EncodingError` with one of `empty-payload`, `undetected-type`,
      `unsupported-type`, `payload-too-large`, `malformed-envelope`.
    """
    if not raw:
        return EncodingError(EMPTY_PAYLOAD, "Payload is empty")

    if isinstance(raw, str):
        raw = raw.encode("utf-8")
    raw = bytes(raw)

    if raw[:5].lower() == b"data:":
        return _encode_data_uri(raw, declared_name)

    mime_type = _sniff(raw) or _from_name(declared_name)
    if not mime_type:
        return EncodingError(UNDETECTED_TYPE, "Could not determine media type")

    return _build_part(raw, mime_type, declared_name)


def to_data_uri(part: BinaryPart) -> str:
    """Render an encoded part back into a base64 data URI."""
    return f"data:{part.mime_type};base64,{part.data}"


# ============================================================
# DATA URI ENVELOPES
# ============================================================

def _encode_data_uri(raw: bytes, declared_name: str | None):
    """Unpack a data-URI envelope and encode its payload."""
    header, separator, body = raw.partition(b",")
    if not separator:
        return EncodingError(MALFORMED_ENVELOPE, "Data URI has no payload separator")

    try:
        header_text = header.decode("ascii").strip()
    except UnicodeDecodeError:
        return EncodingError(MALFORMED_ENVELOPE, "Data URI header is not ASCII")

    match = _DATA_URI_HEADER_RE.match(header_text)
    if not match:
        return EncodingError(MALFORMED_ENVELOPE, "Data URI header is malformed")

    mime_type = _normalize_media_type(match.group("mime"))
    if not mime_type:
        return EncodingError(UNDETECTED_TYPE, "Data URI declares no media type")

    params = [p.strip().lower() for p in match.group("params").split(";") if p.strip()]

    body = body.strip()
    if not body:
        return EncodingError(EMPTY_PAYLOAD, "Data URI payload is empty")

    if "base64" in params:
        try:
            payload = base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError):
            return EncodingError(MALFORMED_ENVELOPE, "Data URI payload is not valid base64")
    else:
        payload = unquote_to_bytes(body)

    if not payload:
        return EncodingError(EMPTY_PAYLOAD, "Data URI payload is empty")

    return _build_part(payload, mime_type, declared_name)


# ============================================================
# DETECTION
# ============================================================

def _sniff(raw: bytes) -> str | None:
    """Detect media type from the payload signature."""
    if raw.startswith(b"%PDF-"):
        return "application/pdf"
    if raw[:4] == b"RIFF" and raw[8:12] == b"WAVE":
        return "audio/wav"
    if raw.startswith(b"OggS"):
        return "audio/ogg"
    if raw.startswith(b"\x1a\x45\xdf\xa3"):
        return "audio/webm"
    if raw.startswith(b"ID3") or raw[:2] in (b"\xff\xfb", b"\xff\xf3", b"\xff\xf2"):
        return "audio/mpeg"
    if raw[4:8] == b"ftyp" and raw[8:11] in (b"M4A", b"mp4"):
        return "audio/mp4"
    return _identify_image(raw)


def _identify_image(raw: bytes) -> str | None:
    """Let Pillow identify image formats from their headers."""
    try:
        with Image.open(io.BytesIO(raw)) as img:
            image_format = img.format
    except UnidentifiedImageError:
        return None
    except Exception:
        # Truncated or hostile headers can fail inside format plugins.
        return None

    if not image_format:
        return None
    return _normalize_media_type(Image.MIME.get(image_format.upper()))


def _from_name(declared_name: str | None) -> str | None:
    """Map a declared file name extension to a media type."""
    if not declared_name:
        return None
    _, ext = os.path.splitext(declared_name)
    return EXTENSION_MEDIA_TYPES.get(ext.lower())


def _normalize_media_type(mime_type: str | None) -> str | None:
    if not mime_type:
        return None
    mime_type = mime_type.strip().lower()
    return MEDIA_TYPE_ALIASES.get(mime_type, mime_type)


# ============================================================
# VALIDATION
# ============================================================

def _build_part(payload: bytes, mime_type: str, declared_name: str | None):
    """Enforce media-type and size constraints, then encode."""
    if mime_type not in RECOGNIZED_MEDIA_TYPES:
        return EncodingError(UNSUPPORTED_TYPE, f"Unsupported media type: {mime_type}")

    if len(payload) > MAX_PAYLOAD_BYTES:
        return EncodingError(PAYLOAD_TOO_LARGE, f"Payload exceeds {MAX_PAYLOAD_MB} MB limit")

    return BinaryPart(
        mime_type=mime_type,
        data=base64.b64encode(payload).decode("ascii"),
        name=declared_name,
    )
