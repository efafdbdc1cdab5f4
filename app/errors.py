"""Terminal request errors raised by the report pipeline."""
from __future__ import annotations

from typing import Optional


class InputValidationError(ValueError):
    """Request input that can never succeed; surfaced to the client as a 4xx."""

    def __init__(self, message: str, *, status_code: int = 400, details: Optional[str] = None,
                 available_range: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details
        self.available_range = available_range

    def to_detail(self) -> dict:
        """Serialize into an HTTPException detail body."""
        detail: dict = {"error": self.message}
        if self.details:
            detail["details"] = self.details
        if self.available_range is not None:
            detail["availableRange"] = self.available_range
        return detail
