from typing import Any, Dict, List, Optional


class CheckoutError(Exception):
    status_code = 500
    message = "Checkout failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[str]] = None):
        self.message = message or self.message
        self.errors = list(errors or [])
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class OrderValidationError(CheckoutError):
    status_code = 422
    message = "Product validation failed"


class PaymentDeclinedError(CheckoutError):
    status_code = 402
    message = "Payment processing failed"

    def __init__(self, transaction: Dict[str, Any], message: Optional[str] = None):
        super().__init__(message)
        self.transaction = transaction

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body["transaction"] = self.transaction
        return body


class OrderNotFoundError(CheckoutError):
    status_code = 404
    message = "Order not found"


class OrderConflictError(CheckoutError):
    status_code = 409


class OrderCreationError(CheckoutError):
    status_code = 500
    message = "Failed to create order"
