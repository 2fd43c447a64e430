class MarketplaceException(Exception):
    """Base exception for the tutoring marketplace"""
    status_code = 500


class NotFoundError(MarketplaceException):
    """Exception raised when a referenced entity does not exist"""
    status_code = 404


class NotApprovedError(NotFoundError):
    """Exception raised when a tutor exists but is not approved or not active"""
    pass


class ForbiddenError(MarketplaceException):
    """Exception raised when the actor has no relationship to the resource or lacks the role"""
    status_code = 403


class InvalidStateError(MarketplaceException):
    """Exception raised for illegal booking status transitions"""
    status_code = 400


class ConflictError(MarketplaceException):
    """Exception raised when an interval overlaps an active booking"""
    status_code = 409


class OutsideHoursError(ConflictError):
    """Exception raised when the tutor is not available at the requested time"""
    pass


class ValidationError(MarketplaceException):
    """Exception raised for malformed time, date, duration or rating input"""
    status_code = 422


class AuthenticationError(MarketplaceException):
    """Exception raised for authentication errors"""
    status_code = 401


class RateLimitError(MarketplaceException):
    """Exception raised when an actor exceeds the request budget"""
    status_code = 429

    def __init__(self, message: str, retry_after: int = 0):
        super().__init__(message)
        self.retry_after = retry_after


class TransientStorageError(MarketplaceException):
    """Exception raised for storage failures that are safe to retry"""
    status_code = 503
