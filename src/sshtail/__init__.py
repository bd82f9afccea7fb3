"""sshtail: Tail files on multiple SSH hosts as one consolidated stream."""

from .config import (
    HostEndpoint,
    HostKeyPolicy,
    SpecData,
    TailOptions,
    load_spec,
    new_spec_template,
)
from .connection import ClientConnection, establish
from .errors import (
    AlreadyClosedError,
    AlreadyStartedError,
    AuthError,
    ClosedSessionError,
    DialError,
    EstablishError,
    HostVerificationError,
    KeyLoadError,
    SessionCloseError,
    SessionStartError,
    SpecError,
    TailError,
)
from .keys import Credential, load_private_key, resolve_credentials
from .multiplexer import ConsolidatedWriter, RunResult, ShutdownCoordinator, run_spec
from .session import SessionState, TailSession

__all__ = [
    "HostEndpoint",
    "HostKeyPolicy",
    "SpecData",
    "TailOptions",
    "load_spec",
    "new_spec_template",
    "ClientConnection",
    "establish",
    "AlreadyClosedError",
    "AlreadyStartedError",
    "AuthError",
    "ClosedSessionError",
    "DialError",
    "EstablishError",
    "HostVerificationError",
    "KeyLoadError",
    "SessionCloseError",
    "SessionStartError",
    "SpecError",
    "TailError",
    "Credential",
    "load_private_key",
    "resolve_credentials",
    "ConsolidatedWriter",
    "RunResult",
    "ShutdownCoordinator",
    "run_spec",
    "SessionState",
    "TailSession",
]
