"""Exception hierarchy for sshtail."""

from __future__ import annotations


class TailError(Exception):
    """Base class for all sshtail errors."""


class SpecError(TailError):
    """The spec file is missing, unreadable or invalid."""


class KeyLoadError(TailError):
    """A private key could not be read or decrypted."""

    def __init__(self, path: str, reason: str, host_tag: str | None = None):
        prefix = f"[{host_tag}] " if host_tag else ""
        super().__init__(f"{prefix}Failed to load key from {path}: {reason}")
        self.path = path
        self.reason = reason
        self.host_tag = host_tag


class EstablishError(TailError):
    """Opening a connection to one host failed."""

    def __init__(self, host_tag: str, target: str, reason: str):
        super().__init__(f"[{host_tag}] {self.summary} {target}: {reason}")
        self.host_tag = host_tag
        self.target = target
        self.reason = reason

    summary = "Failed to connect to"


class DialError(EstablishError):
    """The network connection could not be opened."""


class AuthError(EstablishError):
    summary = "Authentication rejected by"


class HostVerificationError(EstablishError):
    summary = "Host key verification failed for"


class SessionStateError(TailError):
    """A tail session was used in a state that does not allow it."""

    def __init__(self, host_tag: str):
        super().__init__(f"[{host_tag}] {self.summary}")
        self.host_tag = host_tag

    summary = "Invalid tail session state"


class AlreadyStartedError(SessionStateError):
    summary = "Tail session is already started"


class AlreadyClosedError(SessionStateError):
    summary = "Can't start a closed tail session"


class ClosedSessionError(SessionStateError):
    summary = "Tail session is closed"


class SessionStartError(TailError):
    """The command channel for a tail session could not be opened."""

    def __init__(self, host_tag: str, reason: str):
        super().__init__(f"[{host_tag}] Error establishing session: {reason}")
        self.host_tag = host_tag
        self.reason = reason


class SessionCloseError(TailError):
    """One or more failures observed while closing a tail session."""

    def __init__(self, host_tag: str, causes: list[BaseException | str]):
        details = "; ".join(str(c) for c in causes)
        super().__init__(f"[{host_tag}] Error(s) closing tail session: {details}")
        self.host_tag = host_tag
        self.causes = causes
