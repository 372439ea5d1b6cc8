"""Domain-level errors raised by the services."""

from __future__ import annotations


class ValidationError(ValueError):
    """Input rejected by a domain rule; ``detail`` is safe to show to clients."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


__all__ = ["ValidationError"]
