"""Error taxonomy shared by the API client and the managers built on it."""
from __future__ import annotations

from typing import Optional

from . import config


class KnestError(Exception):
    """Base class for every failure the client core reports."""


class TransportError(KnestError):
    """No connectivity, DNS failure or timeout."""


class HttpStatusError(KnestError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        super().__init__(f"HTTP {status_code}: {detail}" if detail else f"HTTP {status_code}")
        self.status_code = status_code
        self.detail = detail

    @property
    def is_server_error(self) -> bool:
        return 500 <= self.status_code < 600

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class DecodeError(KnestError):
    """A payload did not match the expected schema or timestamp format."""


class DuplicateSelection(KnestError):
    """The interest is already present in the user's profile at that level."""

    def __init__(self, level_name: str, leaf_id: str, name: Optional[str] = None) -> None:
        super().__init__(f"{level_name} {leaf_id} is already selected")
        self.level_name = level_name
        self.leaf_id = leaf_id
        self.name = name


class Unauthenticated(KnestError):
    """The access token is missing or was rejected."""


def user_message(error: BaseException) -> str:
    """Map an error to the localized message shown to the user."""

    messages = config.MESSAGES
    if isinstance(error, DuplicateSelection):
        if error.name:
            return messages["already_selected"].format(name=error.name)
        return messages["duplicate"]
    if isinstance(error, Unauthenticated):
        return messages["unauthenticated"]
    if isinstance(error, TransportError):
        return messages["transport"]
    if isinstance(error, HttpStatusError):
        key = "server" if error.is_server_error else "http"
        return messages[key].format(status=error.status_code)
    if isinstance(error, DecodeError):
        return messages["decode"]
    return messages["unknown"]
