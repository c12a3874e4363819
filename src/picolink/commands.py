"""Logical commands and the MicroPython scripts that carry them."""

from __future__ import annotations

from dataclasses import dataclass
import textwrap
from typing import Union

from .listing import DelimitedListingCodec, JsonListingCodec

DEFAULT_SENTINEL = "_--EOT--_"
DEFAULT_ERROR_MARKER = "###ERROR###:"
CONTENT_ENCODINGS = ("text", "base64")

# base64 chunks must be a multiple of 3 bytes so the encoded pieces concatenate cleanly.
_TEXT_CHUNK = 256
_BASE64_CHUNK = 192


@dataclass(frozen=True)
class ListCommand:
    path: str = ""


@dataclass(frozen=True)
class ReadCommand:
    path: str


Command = Union[ListCommand, ReadCommand]


class ScriptBuilder:
    """Renders commands as raw-REPL scripts.

    Every script wraps its work in ``try/except/finally`` so that the
    sentinel is printed exactly once, after an error-marker line if the
    work raised.
    """

    def __init__(
        self,
        *,
        sentinel: str = DEFAULT_SENTINEL,
        error_marker: str = DEFAULT_ERROR_MARKER,
        listing_codec: DelimitedListingCodec | JsonListingCodec | None = None,
        content_encoding: str = "text",
    ) -> None:
        if content_encoding not in CONTENT_ENCODINGS:
            raise ValueError(f"Unsupported content encoding: {content_encoding}")
        self.sentinel = sentinel
        self.error_marker = error_marker
        self.listing_codec = listing_codec or DelimitedListingCodec()
        self.content_encoding = content_encoding

    def build(self, command: Command) -> str:
        if isinstance(command, ListCommand):
            return self._wrap(self._list_body(command))
        if isinstance(command, ReadCommand):
            return self._wrap(self._read_body(command))
        raise TypeError(f"Unsupported command: {command!r}")

    def _list_body(self, command: ListCommand) -> str:
        call = f"os.listdir({command.path!r})" if command.path else "os.listdir()"
        return (
            "try:\n"
            "    import os\n"
            "except ImportError:\n"
            "    import uos as os\n"
            f"names = {call}\n"
            + self.listing_codec.remote_snippet()
        )

    def _read_body(self, command: ReadCommand) -> str:
        if self.content_encoding == "base64":
            return (
                "try:\n"
                "    import ubinascii as binascii\n"
                "except ImportError:\n"
                "    import binascii\n"
                f"with open({command.path!r}, 'rb') as f:\n"
                "    while True:\n"
                f"        chunk = f.read({_BASE64_CHUNK})\n"
                "        if not chunk:\n"
                "            break\n"
                "        print(binascii.b2a_base64(chunk).decode().strip(), end='')\n"
            )
        return (
            f"with open({command.path!r}, 'r') as f:\n"
            "    while True:\n"
            f"        chunk = f.read({_TEXT_CHUNK})\n"
            "        if not chunk:\n"
            "            break\n"
            "        print(chunk, end='')\n"
        )

    def _wrap(self, body: str) -> str:
        return (
            "try:\n"
            + textwrap.indent(body, "    ")
            + "except Exception as e:\n"
            f"    print({self.error_marker!r} + str(e), end='')\n"
            "finally:\n"
            f"    print({self.sentinel!r}, end='')\n"
        )
