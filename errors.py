"""
Errors raised by perk operations.

Each error carries the HTTP status it maps to; ``main.py`` registers a
single exception handler that turns them into JSON responses.
"""

from typing import List, Optional


class PerkError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequest(PerkError):
    status_code = 400


class PerkValidationError(BadRequest):
    """Payload failed validation.  ``errors`` holds one message per violation."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(". ".join(self.errors))


class Unauthorized(PerkError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFound(PerkError):
    status_code = 404

    def __init__(self, message: str = "Perk not found"):
        super().__init__(message)


class Conflict(PerkError):
    status_code = 409

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Duplicate perk for this merchant")
