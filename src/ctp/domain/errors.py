class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class UserNotFoundError(NotFoundError):
    pass


class ProjectNotFoundError(NotFoundError):
    pass


class ItemNotFoundError(NotFoundError):
    pass


class InvalidTransitionError(AppError):
    """Clock state machine precondition violated."""


class SameProjectError(InvalidTransitionError):
    pass


class InsufficientStockError(AppError):
    pass


class NothingToInvoiceError(AppError):
    pass


class ConcurrentUpdateError(AppError):
    """A concurrent writer claimed the same records first."""
