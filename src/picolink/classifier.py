"""Interpretation of collected frames as listings, content or remote errors."""

from __future__ import annotations

import binascii

from .commands import CONTENT_ENCODINGS, DEFAULT_ERROR_MARKER, Command, ListCommand, ReadCommand
from .errors import MalformedResponse
from .listing import DelimitedListingCodec, JsonListingCodec
from .responses import ClassifiedResponse, Content, Listing, RemoteError

PROMPT_MARKER = ">"
RAW_ACK = ">OK"
_BASE64_ALPHABET = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/=")


def strip_boundary(text: str, start_char: str | None = None) -> str:
    """Discards shell output that precedes the script's own output.

    A raw-REPL ``>OK`` acknowledgement is the most reliable boundary. Without
    one, ``start_char`` (first occurrence) or else the last prompt marker is
    used, together with the space that follows a friendly ``>>> `` prompt.
    """

    ack = text.find(RAW_ACK)
    if ack >= 0:
        text = text[ack + len(RAW_ACK) :]
    elif start_char is None:
        marker = text.rfind(PROMPT_MARKER)
        if marker >= 0:
            text = text[marker + 1 :]
            if text.startswith(" "):
                text = text[1:]

    if start_char is not None:
        start = text.find(start_char)
        if start >= 0:
            text = text[start:]
    return text


def _decode_base64(text: str) -> bytes:
    payload = "".join(text.split()).encode("ascii", errors="strict")
    return binascii.a2b_base64(payload, strict_mode=True)


class ResponseClassifier:
    def __init__(
        self,
        *,
        error_marker: str = DEFAULT_ERROR_MARKER,
        listing_codec: DelimitedListingCodec | JsonListingCodec | None = None,
        content_encoding: str = "text",
    ) -> None:
        if not error_marker:
            raise ValueError("error_marker must not be empty")
        if content_encoding not in CONTENT_ENCODINGS:
            raise ValueError(f"Unsupported content encoding: {content_encoding}")
        self.error_marker = error_marker
        self.listing_codec = listing_codec or DelimitedListingCodec()
        self.content_encoding = content_encoding
        self._marker_outside_base64 = not set(error_marker) <= _BASE64_ALPHABET

    def classify(self, frame: bytes, command: Command) -> ClassifiedResponse:
        try:
            text = frame.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedResponse(f"Response is not valid UTF-8: {exc}") from exc

        error = self._remote_error(text, command)
        if error is not None:
            return error

        if isinstance(command, ListCommand):
            cleaned = strip_boundary(text, self.listing_codec.start_char).strip()
            return Listing(self.listing_codec.decode(cleaned))

        if isinstance(command, ReadCommand):
            cleaned = strip_boundary(text)
            if self.content_encoding == "base64":
                try:
                    data = _decode_base64(cleaned)
                except (binascii.Error, UnicodeEncodeError) as exc:
                    raise MalformedResponse(f"Content is not valid base64: {exc}") from exc
                return Content(text=cleaned, data=data)
            return Content(text=cleaned, data=cleaned.encode("utf-8"))

        raise TypeError(f"Unsupported command: {command!r}")

    def _remote_error(self, text: str, command: Command) -> RemoteError | None:
        """Finds the marker the script prints when its body raised.

        Listings and text content may legitimately contain the marker, so it
        only counts when nothing but shell output precedes it. Base64 content
        cannot contain it, so a failure after streaming began is still seen.
        """

        marker = text.find(self.error_marker)
        if marker < 0:
            return None
        anywhere = (
            isinstance(command, ReadCommand)
            and self.content_encoding == "base64"
            and self._marker_outside_base64
        )
        if not anywhere and strip_boundary(text[:marker]).strip():
            return None
        return RemoteError(text[marker + len(self.error_marker) :])
