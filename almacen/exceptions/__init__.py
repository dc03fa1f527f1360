"""Custom exceptions for the Almacén inventory application."""


def _fmt_qty(value) -> str:
    """Render a quantity without trailing zeros (10.00 -> 10, 2.50 -> 2.5)."""
    if value % 1 == 0:
        return f"{int(value)}"
    return f"{value:.2f}".rstrip('0').rstrip('.')


class AlmacenError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class BusinessLogicError(AlmacenError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class ValidationError(BusinessLogicError):
    """Invalid input (missing fields, negative quantities, bad formats)."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class ImportFormatError(ValidationError):
    """The import workbook lacks the columns needed to build products."""


class NotFoundError(AlmacenError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class DuplicateCodeError(BusinessLogicError):
    """Raised when creating a product whose code is already taken."""
    def __init__(self, code):
        super().__init__(
            f'Ya existe un producto con el código "{code}"',
            status_code=409,
            payload={'code': code}
        )
        self.code = code


class InsufficientStockError(BusinessLogicError):
    """Raised when an operation fails due to lack of stock."""
    def __init__(self, product_name, required, available):
        message = (
            f"Stock insuficiente para {product_name}: "
            f"se requieren {_fmt_qty(required)}, disponible {_fmt_qty(available)}"
        )
        super().__init__(message, status_code=409, payload={
            'required': float(required),
            'available': float(available),
        })
        self.required = required
        self.available = available


class InvalidStateError(BusinessLogicError):
    """Raised when a movement cannot be reverted in its current state."""
    def __init__(self, message, payload=None):
        super().__init__(message, status_code=409, payload=payload)


class ConflictError(BusinessLogicError):
    """Raised when the stored balance changed since the caller read it."""
    def __init__(self, message="El stock fue modificado por otra operación. Recargue e intente de nuevo.",
                 payload=None):
        super().__init__(message, status_code=409, payload=payload)


class StoreUnavailableError(AlmacenError):
    """Backing store (database) transport failure."""
    def __init__(self, message="Base de datos no disponible", payload=None):
        super().__init__(message, 503, payload)


class UnauthorizedError(AlmacenError):
    """Raised when the request carries no acting user and anonymous access is off."""
    def __init__(self, message="Usuario no identificado"):
        super().__init__(message, 401)
