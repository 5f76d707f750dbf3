"""Custom exceptions for ride dispatch and trip management."""


class DispatchError(Exception):
    """Base class for errors surfaced to the originating party."""
    code = "dispatch_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()


class ValidationError(DispatchError):
    """Raised when an inbound payload is missing or malformed."""
    code = "validation_error"


class NotFoundError(DispatchError):
    """Raised when a request, trip or driver id is unknown."""
    code = "not_found"


class RideNotFoundError(NotFoundError):
    """Raised when a ride request cannot be found."""
    pass


class TripNotFoundError(NotFoundError):
    """Raised when a trip cannot be found."""
    pass


class DriverNotFoundError(NotFoundError):
    """Raised when a driver profile cannot be found."""
    pass


class ConflictError(DispatchError):
    """Raised when an operation races a state change that already happened."""
    code = "conflict"


class RideNotAvailableError(ConflictError):
    """Raised when a ride is not in an available state for the operation."""
    pass


class ActiveRideExistsError(ConflictError):
    """Raised when a rider already has an active ride request."""
    pass


class InvalidTransitionError(ConflictError):
    """Raised when a trip status change is not allowed from its current status."""
    pass


class UnauthorizedError(DispatchError):
    """Raised when the actor does not own or match the request or trip."""
    code = "unauthorized"


class TransientUnavailable(DispatchError):
    """Raised when a candidate driver cannot be reached right now."""
    code = "unavailable"
