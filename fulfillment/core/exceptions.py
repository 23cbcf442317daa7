"""
Custom Application Exceptions
"""


class FulfillmentError(Exception):
    """Base exception for the fulfillment engine"""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(FulfillmentError):
    """Raised when an order, wave, task, allocation or inventory record is missing"""
    pass


class InvalidStateError(FulfillmentError):
    """Raised when an entity is not in a status that allows the operation"""
    pass


class ValidationError(FulfillmentError):
    """Raised when request data or quantities fail validation"""
    pass


class ConcurrencyConflictError(FulfillmentError):
    """Raised on lock contention; the caller may retry the whole request"""
    retryable = True
