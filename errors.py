"""Error types raised by the stores and turned into response envelopes by main."""


class BudgetoError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BudgetoError):
    status_code = 400
    default_message = "Invalid input"


class DuplicateEmail(BudgetoError):
    status_code = 409
    default_message = "Email already in use"


class Unauthorized(BudgetoError):
    status_code = 401
    default_message = "Unauthorized"


class StorageFailure(BudgetoError):
    status_code = 500
    default_message = "Storage failure"
