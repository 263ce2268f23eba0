"""Order core error kinds. Each kind carries the HTTP status the API layer answers with."""


class OrderError(Exception):
    kind = "order_error"
    status_code = 500

    def __init__(self, message: str = "", **details) -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.details = details

    def to_dict(self) -> dict:
        payload = {"success": False, "error": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(OrderError):
    kind = "validation_error"
    status_code = 400


class ItemUnavailable(ValidationError):
    kind = "item_unavailable"


class InvalidSelection(ValidationError):
    kind = "invalid_selection"


class EmptyOrder(ValidationError):
    kind = "empty_order"


class NotFound(OrderError):
    kind = "not_found"
    status_code = 404


class NotAuthorized(OrderError):
    kind = "not_authorized"
    status_code = 403


class NotAuthenticated(NotAuthorized):
    kind = "not_authenticated"
    status_code = 401


class IllegalTransition(OrderError):
    kind = "illegal_transition"
    status_code = 400

    def __init__(self, source: str, target: str, message: str = "") -> None:
        super().__init__(
            message or f"Cannot change status from {source} to {target}",
            source=source,
            target=target,
        )
        self.source = source
        self.target = target


class OrderNotPayable(OrderError):
    kind = "order_not_payable"
    status_code = 400


class PaymentGatewayError(OrderError):
    kind = "payment_gateway_error"
    status_code = 502


class InvalidSignature(OrderError):
    kind = "invalid_signature"
    status_code = 400


class Conflict(OrderError):
    kind = "conflict"
    status_code = 409


AlreadyExists = Conflict
