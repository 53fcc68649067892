from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    USERNAME_TAKEN = "USERNAME_TAKEN"
    ALREADY_JOINED = "ALREADY_JOINED"
    UNKNOWN_ROOM = "UNKNOWN_ROOM"
    NOT_JOINED = "NOT_JOINED"


@dataclass(frozen=True)
class ProtocolError:
    """A per-connection failure reported back to the originating client."""

    code: ErrorCode
    message: str

    def to_payload(self) -> dict:
        return {"code": self.code.value, "message": self.message}


class RegistryCorruptedError(RuntimeError):
    """Raised when the presence registry finds its own indexes out of sync."""
