"""
Error kinds raised by the discovery and control clients.

TransportError: the request never got an HTTP answer (connection, DNS, timeout, socket).
ProtocolError: an answer arrived but breaks the protocol (status, headers, XML, JSON).
SemanticError: the answer is well-formed but unusable for the requested operation.
"""
from __future__ import annotations


class CastError(Exception):
    """Base class for every error raised by this project."""


class TransportError(CastError):
    pass


class ProtocolError(CastError):
    pass


class BadStatusError(ProtocolError):
    def __init__(self, method: str, url: str, status: int) -> None:
        super().__init__(f"{method} {url}: bad HTTP response status {status}")
        self.method = method
        self.url = url
        self.status = status


class MissingApplicationUrlError(ProtocolError):
    def __init__(self, location: str = "") -> None:
        message = "missing Application-URL header"
        super().__init__(f"{location}: {message}" if location else message)
        self.location = location


class InvalidResponseError(ProtocolError):
    pass


class SemanticError(CastError):
    pass


class InvalidMacError(SemanticError, ValueError):
    pass


class NoMacError(SemanticError):
    def __init__(self) -> None:
        super().__init__("missing device MAC address")


class WakeupFailedError(SemanticError):
    def __init__(self, name: str = "") -> None:
        super().__init__(f"unable to wakeup device {name!r}" if name else "unable to wakeup device")


class UnknownAppStateError(SemanticError):
    def __init__(self, app_name: str, state: str) -> None:
        super().__init__(f"{app_name!r}: unknown app state {state!r}")
        self.app_name = app_name
        self.state = state


class LaunchFailedError(SemanticError):
    pass


class NoScreensError(SemanticError):
    def __init__(self) -> None:
        super().__init__("missing screens array")


class NoLoungeTokenError(SemanticError):
    def __init__(self) -> None:
        super().__init__("missing loungeToken")


class MissingSessionIdsError(SemanticError):
    def __init__(self) -> None:
        super().__init__("missing session ids")


class InvalidPairingCodeError(SemanticError, ValueError):
    pass
