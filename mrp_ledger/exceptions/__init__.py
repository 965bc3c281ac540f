"""Custom exceptions for the manufacturing ledger."""
from decimal import Decimal


def _fmt_qty(value) -> str:
    """Render a quantity without trailing zeros (10.5000 -> 10.5, 3.00 -> 3)."""
    value = Decimal(str(value))
    if value % 1 == 0:
        return f"{int(value)}"
    return f"{value:f}".rstrip('0').rstrip('.')


class LedgerError(Exception):
    """Base exception for all engine errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    @property
    def kind(self):
        return type(self).__name__

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['error'] = self.kind
        rv['status'] = 'error'
        return rv


class ValidationError(LedgerError):
    """Malformed input; always raised before anything is written."""
    def __init__(self, message, field=None, value=None, status_code=400):
        payload = {}
        if field is not None:
            payload['field'] = field
        if value is not None:
            payload['value'] = str(value)
        super().__init__(message, status_code, payload)
        self.field = field
        self.value = value


class DuplicateVersionError(ValidationError):
    """A BOM version already exists for the product."""
    def __init__(self, product_id, version):
        super().__init__(
            f"BOM version '{version}' already exists for product {product_id}",
            field='version',
            value=version,
            status_code=409,
        )
        self.product_id = product_id
        self.version = version
        self.payload['product_id'] = product_id


class NotFoundError(LedgerError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InsufficientStockError(LedgerError):
    """Raised when an out movement would drive stock below zero."""
    def __init__(self, product_id, product_name, required, available):
        message = (
            f"Insufficient stock for {product_name}: "
            f"required {_fmt_qty(required)}, available {_fmt_qty(available)}"
        )
        super().__init__(message, status_code=409, payload={
            'product_id': product_id,
            'required': str(required),
            'available': str(available),
        })
        self.product_id = product_id
        self.required = Decimal(str(required))
        self.available = Decimal(str(available))


class ConcurrencyConflictError(LedgerError):
    """Raised when the stock compare-and-swap keeps losing to concurrent writers."""
    def __init__(self, product_id, attempts):
        message = f"Stock for product {product_id} changed concurrently; gave up after {attempts} attempts"
        super().__init__(message, status_code=409, payload={
            'product_id': product_id,
            'attempts': attempts,
        })
        self.product_id = product_id
        self.attempts = attempts


class ImmutableRecordError(LedgerError):
    """Raised when code tries to rewrite or remove a written ledger entry."""
    def __init__(self, message):
        super().__init__(message, status_code=409)
