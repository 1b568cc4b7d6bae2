"""
Caller identity: exactly one of an authenticated account reference or a
guest reference per request.

Authentication itself happens upstream; by the time a request reaches the
relay the front end has put either `username` (signed-in user) or
`guestId` / the `x-guest-id` header (anonymous visitor) on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from lawline.errors import IdentityRequired

GUEST_HEADER = "x-guest-id"


@dataclass(frozen=True)
class Authenticated:
    identifier: str
    is_guest = False

    @property
    def actor_id(self) -> str:
        return self.identifier


@dataclass(frozen=True)
class Guest:
    guest_id: str
    is_guest = True

    @property
    def actor_id(self) -> str:
        return self.guest_id


Identity = Authenticated | Guest


def _clean(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def resolve_identity(body: Mapping, headers: Mapping | None = None) -> Identity:
    """
    Classify the caller. A username always wins over a guest id, so a
    visitor who signs in mid-session is treated as the account holder.
    """
    username = _clean(body.get("username"))
    if username:
        return Authenticated(identifier=username)

    guest_id = _clean(body.get("guestId"))
    if not guest_id and headers is not None:
        guest_id = _clean(headers.get(GUEST_HEADER))
    if guest_id:
        return Guest(guest_id=guest_id)

    raise IdentityRequired()
