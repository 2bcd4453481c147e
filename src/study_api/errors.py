from __future__ import annotations

from typing import Any


class ServiceError(RuntimeError):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def body(self) -> dict[str, Any]:
        return self.payload if self.payload is not None else {"detail": self.message}
