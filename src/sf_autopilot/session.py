from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import threading
from typing import Any, Callable, Protocol

from .commands import Command
from .models import GameStateSnapshot


class SessionError(Exception):
    """Base class for failures reported by the session client."""


class SendFailed(SessionError):
    pass


class SnapshotApplyFailed(SessionError):
    pass


class ReauthenticationFailed(SessionError):
    pass


class FatalSessionError(SessionError):
    """Login can never succeed without outside help (bad credentials, banned account)."""


@dataclass(frozen=True)
class LoginResult:
    handle: Any
    snapshot: GameStateSnapshot


class SessionClient(Protocol):
    def send(self, handle: Any, command: Command) -> Any: ...

    def apply(self, snapshot: GameStateSnapshot, response: Any) -> None: ...

    def login(self) -> LoginResult: ...


class SessionState(str, Enum):
    AUTHENTICATING = "authenticating"
    IDLE = "idle"
    BUSY = "busy"
    REAUTHENTICATING = "reauthenticating"
    FATAL = "fatal_error"


EventSink = Callable[[str, str, dict[str, Any]], None]


def _ignore_event(event_type: str, severity: str, payload: dict[str, Any]) -> None:
    return None


class AccountSession:
    """
    Ownership state machine for one account's connection handle.

    The handle is either held here while idle or checked out to exactly one
    in-flight operation. Every transition runs under ``lock``; callers that need
    a consistent view of state, snapshot and queue hold it across reads.
    """

    def __init__(self, on_event: EventSink | None = None) -> None:
        self.lock = threading.RLock()
        self._state = SessionState.AUTHENTICATING
        self._handle: Any = None
        self._in_flight: Any = None
        self._snapshot: GameStateSnapshot | None = None
        self._reason = ""
        self._message = ""
        self._on_event = on_event or _ignore_event

    @property
    def state(self) -> SessionState:
        with self.lock:
            return self._state

    @property
    def reason(self) -> str:
        with self.lock:
            return self._reason

    @property
    def fatal_message(self) -> str:
        with self.lock:
            return self._message

    def is_idle(self) -> bool:
        return self.state == SessionState.IDLE

    def snapshot(self) -> GameStateSnapshot | None:
        with self.lock:
            if self._state in (SessionState.IDLE, SessionState.BUSY):
                return self._snapshot
            return None

    def handle_in_flight(self) -> bool:
        with self.lock:
            return self._in_flight is not None

    def handle_held(self) -> bool:
        with self.lock:
            return self._handle is not None

    def status_label(self) -> str:
        with self.lock:
            if self._state == SessionState.BUSY:
                return f"busy:{self._reason}"
            if self._state == SessionState.FATAL:
                return f"fatal_error:{self._message}"
            return self._state.value

    def authenticated(self, handle: Any, snapshot: GameStateSnapshot) -> bool:
        with self.lock:
            if self._state not in (SessionState.AUTHENTICATING, SessionState.REAUTHENTICATING):
                self._on_event(
                    "unexpected_login",
                    "warning",
                    {"state": self._state.value},
                )
                return False
            self._state = SessionState.IDLE
            self._handle = handle
            self._in_flight = None
            self._snapshot = snapshot
            self._reason = ""
            return True

    def take(self, reason: str) -> Any:
        with self.lock:
            if self._state != SessionState.IDLE or self._handle is None:
                return None
            handle = self._handle
            self._handle = None
            self._in_flight = handle
            self._state = SessionState.BUSY
            self._reason = reason
            return handle

    def restore(self, handle: Any) -> bool:
        with self.lock:
            if self._state != SessionState.BUSY or self._in_flight is None or handle is not self._in_flight:
                self._on_event(
                    "handle_dropped",
                    "warning",
                    {"state": self._state.value, "reason": self._reason},
                )
                return False
            self._handle = handle
            self._in_flight = None
            self._state = SessionState.IDLE
            self._reason = ""
            return True

    def mark_failed(self, reason: str) -> bool:
        with self.lock:
            if self._state == SessionState.FATAL:
                return False
            self._state = SessionState.REAUTHENTICATING
            self._handle = None
            self._in_flight = None
            self._reason = reason
            return True

    def relogin_succeeded(self, handle: Any, snapshot: GameStateSnapshot) -> bool:
        """Park the fresh handle as in flight until the post-relogin grace delay ends."""
        with self.lock:
            if self._state != SessionState.REAUTHENTICATING:
                self._on_event("unexpected_login", "warning", {"state": self._state.value})
                return False
            self._state = SessionState.BUSY
            self._snapshot = snapshot
            self._handle = None
            self._in_flight = handle
            self._reason = "post-relogin"
            return True

    def fail_fatally(self, message: str) -> None:
        with self.lock:
            self._state = SessionState.FATAL
            self._handle = None
            self._in_flight = None
            self._message = message
            self._reason = ""
