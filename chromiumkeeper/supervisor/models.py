from typing import Optional

from pydantic import BaseModel

REASON_BINARY_NOT_FOUND = "binary not found"
REASON_TIMEOUT = "timeout"
REASON_SPAWN_ERROR = "spawn error"
REASON_EXITED = "exited"
REASON_PROFILE_DIR = "profile dir unavailable"


class StartResult(BaseModel):
    ok: bool
    already_running: bool = False
    reason: Optional[str] = None

    def to_payload(self) -> dict:
        """Render the camelCase shape handed to the gateway."""
        payload: dict = {"ok": self.ok}
        if self.already_running:
            payload["alreadyRunning"] = True
        if self.reason is not None:
            payload["reason"] = self.reason
        return payload


class BrowserStatus(BaseModel):
    running: bool
