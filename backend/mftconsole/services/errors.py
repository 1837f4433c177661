from __future__ import annotations


class ConsoleServiceError(Exception):
    pass


class NotFoundError(ConsoleServiceError):
    pass


class PermissionDeniedError(ConsoleServiceError):
    pass


class ConfigInUseError(ConsoleServiceError):
    pass


class UserDeletionError(ConsoleServiceError):
    pass


class FormValidationError(ConsoleServiceError):
    """Raised with every problem found in a submitted form, keyed by field name."""

    def __init__(self, errors: dict[str, str]) -> None:
        super().__init__("; ".join(f"{k}: {v}" for k, v in errors.items()))
        self.errors = errors
