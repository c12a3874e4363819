"""Wire encodings for remote directory listings.

Each codec owns both halves of the agreement: the MicroPython snippet that
prints ``names`` on the device, and the host-side decoder that turns the
printed text back into filenames.
"""

from __future__ import annotations

import json
import re

from .errors import MalformedResponse

LISTING_CODECS = ("delimited", "json")

_DELIMITER = ","
_ESCAPED_CHARS = "%,>\r\n"
_ENTRY_RE = re.compile(r"(?:[^%]|%[0-9A-Fa-f]{2})*")
_ESCAPE_RE = re.compile(r"%([0-9A-Fa-f]{2})")

_DELIMITED_REMOTE = r"""def _q(s):
    o = ''
    for c in s:
        if c in '%,>\r\n':
            o += '%%%02X' % ord(c)
        else:
            o += c
    return o
print(','.join([_q(n) for n in names]), end='')
"""

_JSON_REMOTE = """try:
    import ujson as json
except ImportError:
    import json
print(json.dumps(names), end='')
"""


def escape_name(name: str) -> str:
    return "".join(f"%{ord(ch):02X}" if ch in _ESCAPED_CHARS else ch for ch in name)


def _unescape_entry(entry: str) -> str:
    if not _ENTRY_RE.fullmatch(entry):
        raise MalformedResponse(f"Invalid escape sequence in listing entry: {entry!r}")
    return _ESCAPE_RE.sub(lambda match: chr(int(match.group(1), 16)), entry)


def _drop_trailing_empty(entries: list[str]) -> list[str]:
    while entries and entries[-1] == "":
        entries.pop()
    return entries


class DelimitedListingCodec:
    """Comma-joined names, with ``% , > CR LF`` written as ``%XX``.

    Escaping ``>`` keeps encoded listings free of the prompt marker, so the
    classifier can strip prompt artifacts without cutting into a filename.
    """

    name = "delimited"
    start_char: str | None = None

    def remote_snippet(self) -> str:
        return _DELIMITED_REMOTE

    def encode(self, names: list[str] | tuple[str, ...]) -> str:
        return _DELIMITER.join(escape_name(name) for name in names)

    def decode(self, text: str) -> tuple[str, ...]:
        if not text:
            return ()
        entries = _drop_trailing_empty(text.split(_DELIMITER))
        if "" in entries:
            raise MalformedResponse("Listing contains an empty filename entry")
        return tuple(_unescape_entry(entry) for entry in entries)


class JsonListingCodec:
    """A JSON array of strings."""

    name = "json"
    start_char: str | None = "["

    def remote_snippet(self) -> str:
        return _JSON_REMOTE

    def encode(self, names: list[str] | tuple[str, ...]) -> str:
        return json.dumps(list(names))

    def decode(self, text: str) -> tuple[str, ...]:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedResponse(f"Listing is not valid JSON: {exc}") from exc
        if not isinstance(payload, list) or not all(isinstance(item, str) for item in payload):
            raise MalformedResponse("Listing JSON must be an array of strings")
        return tuple(_drop_trailing_empty(payload))


def listing_codec(name: str) -> DelimitedListingCodec | JsonListingCodec:
    if name == "delimited":
        return DelimitedListingCodec()
    if name == "json":
        return JsonListingCodec()
    raise ValueError(f"Unsupported listing codec: {name}")
