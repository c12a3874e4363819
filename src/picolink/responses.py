"""Classified results of a single command."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Listing:
    names: tuple[str, ...]


@dataclass(frozen=True)
class Content:
    text: str
    data: bytes


@dataclass(frozen=True)
class RemoteError:
    """The remote script ran its error path and reported ``message``."""

    message: str


ClassifiedResponse = Union[Listing, Content, RemoteError]
