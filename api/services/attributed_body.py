"""
Text recovery from Messages `attributedBody` blobs.

Newer iOS/macOS versions often leave the `text` column empty and store the
message body only as an archived NSAttributedString ("streamtyped" archive).
There is no published format for these blobs, so recovery here is heuristic
and best-effort:

1. Find the NSString class marker that precedes the string payload.
2. Look for a short length-prefixed payload right after it
   (marker byte 0x2B or 0x2A, then a single length byte below 0x80).
3. Otherwise fall back to the longest printable byte run after the marker.

The length-prefix heuristic can land on a byte run that happens to look like
text. ExtractedText.method records which path produced the text so callers can
tell the two apart.
"""
import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

NSSTRING_MARKER = b"NSString"

# Bytes observed right before the one-byte length of short strings ('+' and '*')
LENGTH_MARKERS = frozenset({0x2B, 0x2A})

# Single-byte lengths only; longer strings use a multi-byte length encoding
MAX_SHORT_LENGTH = 0x80

# Fallback runs must be longer than this to count as text
MIN_RUN_LENGTH = 3

METHOD_LENGTH_PREFIXED = "length_prefixed"
METHOD_LONGEST_RUN = "longest_run"

_ALLOWED_CONTROL = frozenset({0x09, 0x0A, 0x0D})
_DISALLOWED_CONTROL = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")


@dataclass(frozen=True)
class ExtractedText:
    """Text recovered from a blob, with the heuristic that produced it."""
    text: str
    method: str
    offset: int  # byte offset of the payload within the blob


def _is_printable_payload(chunk: bytes) -> bool:
    """ASCII printable, tab/newlines, or bytes of multi-byte UTF-8 sequences."""
    for byte in chunk:
        if byte >= 0x80:
            continue
        if 0x20 <= byte < 0x7F:
            continue
        if byte in _ALLOWED_CONTROL:
            continue
        return False
    return True


def _extract_length_prefixed(blob: bytes, start: int) -> Optional[ExtractedText]:
    """Scan for a marker byte followed by a one-byte length and a printable payload."""
    end = len(blob)
    for i in range(start, end - 1):
        if blob[i] not in LENGTH_MARKERS:
            continue

        length = blob[i + 1]
        if not 0 < length < MAX_SHORT_LENGTH:
            continue

        text_start = i + 2
        text_end = text_start + length
        if text_end > end:
            continue

        chunk = blob[text_start:text_end]
        if not _is_printable_payload(chunk):
            continue

        try:
            text = chunk.decode("utf-8")
        except UnicodeDecodeError:
            # Printable-looking but not valid UTF-8: keep scanning
            continue

        return ExtractedText(text=text, method=METHOD_LENGTH_PREFIXED, offset=text_start)

    return None


def _extract_longest_run(blob: bytes, start: int) -> Optional[ExtractedText]:
    """Find the longest run of printable bytes (newlines included) after start."""
    best_start, best_end = start, start
    run_start = start

    for i in range(start, len(blob)):
        byte = blob[i]
        if (0x20 <= byte < 0x7F) or byte >= 0x80 or byte in (0x0A, 0x0D):
            continue
        if i - run_start > best_end - best_start:
            best_start, best_end = run_start, i
        run_start = i + 1

    if len(blob) - run_start > best_end - best_start:
        best_start, best_end = run_start, len(blob)

    if best_end - best_start <= MIN_RUN_LENGTH:
        return None

    # Decode the original byte range so multi-byte characters survive intact
    decoded = blob[best_start:best_end].decode("utf-8", errors="ignore")
    cut = _DISALLOWED_CONTROL.search(decoded)
    if cut:
        decoded = decoded[:cut.start()]
    decoded = decoded.strip()

    if not decoded:
        return None

    return ExtractedText(text=decoded, method=METHOD_LONGEST_RUN, offset=best_start)


def extract_attributed_text(blob: Optional[bytes]) -> Optional[ExtractedText]:
    """
    Recover text from an attributedBody blob, reporting the heuristic used.

    Args:
        blob: Raw attributedBody bytes (may be None or empty)

    Returns:
        ExtractedText, or None if no text could be recovered. Never raises.
    """
    if not blob:
        return None

    try:
        data = bytes(blob)
        idx = data.find(NSSTRING_MARKER)
        if idx == -1:
            logger.debug("attributedBody has no NSString marker")
            return None

        idx += len(NSSTRING_MARKER)

        extracted = _extract_length_prefixed(data, idx)
        if extracted is not None:
            return extracted

        extracted = _extract_longest_run(data, idx)
        if extracted is not None:
            logger.debug(f"attributedBody recovered by longest-run fallback ({len(extracted.text)} chars)")
        return extracted

    except Exception as e:
        logger.debug(f"Failed to parse attributedBody ({len(blob)} bytes): {e}")
        return None


def extract_text_from_attributed_body(blob: Optional[bytes]) -> Optional[str]:
    """
    Extract text content from NSAttributedString binary data.

    Args:
        blob: Binary attributedBody data

    Returns:
        Extracted text content, or None if extraction fails
    """
    extracted = extract_attributed_text(blob)
    return extracted.text if extracted else None
