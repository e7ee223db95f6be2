from __future__ import annotations


class PocketbookError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PocketbookError, ValueError):
    status_code = 400


class InvalidAmount(ValidationError):
    pass


class NotFound(PocketbookError, LookupError):
    status_code = 404


class StoreError(PocketbookError):
    status_code = 500
