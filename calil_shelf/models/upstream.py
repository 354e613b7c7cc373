"""Typed results returned by authenticated Calil calls.

Every upstream call reports its outcome as one of four variants so the
retry wrapper can dispatch on the variant instead of inspecting error text:

- ``Ok``           the call succeeded and carries its value
- ``AuthExpired``  Calil no longer accepts the session cookie
- ``TokenExpired`` Calil rejected the yomitai access token
- ``OtherError``   anything else (5xx, transport errors, bad payloads)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar, Union

from ..exceptions import SessionExpiredError, TokenRejectedError, UpstreamError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class AuthExpired:
    message: str = "Calil session expired"
    status: Optional[int] = None

    def unwrap(self):
        raise SessionExpiredError(self.message)


@dataclass(frozen=True)
class TokenExpired:
    message: str = "Calil rejected the access token"
    status: Optional[int] = None

    def unwrap(self):
        raise TokenRejectedError(self.message)


@dataclass(frozen=True)
class OtherError:
    message: str
    status: Optional[int] = None
    error: Optional[BaseException] = None

    def unwrap(self):
        raise UpstreamError(self.message, status=self.status) from self.error


UpstreamResult = Union[Ok[T], AuthExpired, TokenExpired, OtherError]

AUTH_FAILURES = (AuthExpired, TokenExpired)
