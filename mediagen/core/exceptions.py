class AppError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class InvalidInputError(AppError):
    def __init__(self, message: str = "Invalid request parameters"):
        super().__init__(message, status_code=400)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, status_code=401)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, status_code=403)


class NotFoundError(AppError):
    def __init__(self, entity: str, id: str):
        super().__init__(f"{entity} not found: {id}", status_code=404)


class InsufficientCreditsError(AppError):
    def __init__(self, balance: int, required: int):
        super().__init__(
            f"Insufficient credits: balance={balance}, required={required}",
            status_code=409,
        )
        self.balance = balance
        self.required = required


class DuplicateRequestError(AppError):
    """The idempotency key was already used by this user."""

    def __init__(self, key: str, message: str = "Request already processed or in progress"):
        super().__init__(message, status_code=409)
        self.key = key


class ContentionError(AppError):
    """A balance compare-and-swap lost to a concurrent writer. Safe to retry."""

    retryable = True

    def __init__(self, user_id: str):
        super().__init__(
            "Balance changed concurrently, please retry", status_code=409
        )
        self.user_id = user_id


class RateLimitExceededError(AppError):
    def __init__(self, message: str = "Too many requests. Please try again later.", retry_after: int = 0):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class SignatureMismatchError(AppError):
    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message, status_code=403)


class StorageError(AppError):
    def __init__(self, message: str = "Media storage failed"):
        super().__init__(message, status_code=500)


class ConfigurationError(AppError):
    def __init__(self, message: str):
        super().__init__(message, status_code=500)


class GenerationFailedError(AppError):
    """Every provider attempt failed. Credits already charged are kept."""

    def __init__(self, message: str, remaining_credits: int | None = None):
        super().__init__(message, status_code=500)
        self.remaining_credits = remaining_credits


class OperationDisabledError(AppError):
    def __init__(self, message: str = "Generation is temporarily disabled. Please try again later."):
        super().__init__(message, status_code=503)
