"""
Failure types raised by the fetch layer.
"""
from typing import Optional


class FetchError(Exception):
    """A failed round-trip to the school API.

    ``kind`` tells callers what went wrong:

    * ``network`` - the request never completed (offline, refused, reset)
    * ``http`` - the server answered with a non-2xx status
    * ``decode`` - the server answered 2xx but the JSON body was unreadable
    """

    NETWORK = "network"
    HTTP = "http"
    DECODE = "decode"

    KINDS = (NETWORK, HTTP, DECODE)

    def __init__(
        self,
        kind: str,
        message: str,
        status: Optional[int] = None,
        url: Optional[str] = None,
    ):
        if kind not in self.KINDS:
            raise ValueError(f"Unknown fetch error kind: {kind}")
        super().__init__(f"API Error: {message}")
        self.kind = kind
        self.message = message
        self.status = status
        self.url = url

    @classmethod
    def network(cls, message: str, url: Optional[str] = None) -> "FetchError":
        return cls(cls.NETWORK, message, url=url)

    @classmethod
    def http(cls, status: int, message: str, url: Optional[str] = None) -> "FetchError":
        return cls(cls.HTTP, message, status=status, url=url)

    @classmethod
    def decode(cls, message: str, status: Optional[int] = None, url: Optional[str] = None) -> "FetchError":
        return cls(cls.DECODE, message, status=status, url=url)

    def __reduce__(self):
        return (self.__class__, (self.kind, self.message, self.status, self.url))

    def __repr__(self):
        return f"FetchError(kind={self.kind!r}, status={self.status!r}, message={self.message!r})"


class RequestCancelled(Exception):
    """The request was superseded and its result must be ignored."""
