import enum
from dataclasses import dataclass, field
from typing import Optional

from afap.common.errors import SessionStateError


class SessionState(enum.Enum):
    # Same sequence on both ends; CONFIRMED and ABORTED are terminal.
    CONNECTED = "connected"
    KEY_EXCHANGED = "key_exchanged"
    FILENAME_TRANSFERRED = "filename_transferred"
    CONTENT_TRANSFERRING = "content_transferring"
    CONTENT_COMPLETE = "content_complete"
    CONFIRMED = "confirmed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.CONFIRMED, SessionState.ABORTED)


@dataclass
class FileTransfer:
    name: Optional[str] = None         # base name, as sent by the client
    path: Optional[str] = None         # source path (client) or output path (server)
    total: Optional[int] = None        # declared size on the client, observed on the server
    done: int = 0                      # plaintext bytes sent or written so far
    frames: int = 0                    # content frames, filename frame excluded
    state: SessionState = field(default=SessionState.CONNECTED)

    def advance(self, state: SessionState) -> None:
        if self.state.terminal:
            raise SessionStateError(f"session already ended in state {self.state.value}")
        self.state = state

    def abort(self) -> None:
        if not self.state.terminal:
            self.state = SessionState.ABORTED
