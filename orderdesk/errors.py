"""
Error taxonomy. Every failure surfaced to a caller is an OrderDeskError with a stable
machine-readable `kind`, an HTTP status and a human-readable message.
"""


class OrderDeskError(Exception):
    kind = "Internal"
    status_code = 500

    def __init__(self, message: str, allowed: list[str] | None = None):
        self.message = message
        self.allowed = allowed
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"error": self.kind, "msg": self.message}
        if self.allowed is not None:
            body["allowedNextStatuses"] = self.allowed
        return body


class Unauthenticated(OrderDeskError):
    kind = "Unauthenticated"
    status_code = 401


class Forbidden(OrderDeskError):
    kind = "Forbidden"
    status_code = 403


class NotFound(OrderDeskError):
    kind = "NotFound"
    status_code = 404


class PartnerNotFound(NotFound):
    kind = "PartnerNotFound"


class InvalidInput(OrderDeskError):
    kind = "InvalidInput"
    status_code = 400


class InvalidRole(OrderDeskError):
    kind = "InvalidRole"
    status_code = 400


class PrepTimeRequired(OrderDeskError):
    kind = "PrepTimeRequired"
    status_code = 400


class InvalidState(OrderDeskError):
    kind = "InvalidState"
    status_code = 409


class InvalidTransition(OrderDeskError):
    kind = "InvalidTransition"
    status_code = 409


class AlreadyAssigned(OrderDeskError):
    kind = "AlreadyAssigned"
    status_code = 409


class PartnerUnavailable(OrderDeskError):
    kind = "PartnerUnavailable"
    status_code = 409


class PartnerBusy(OrderDeskError):
    kind = "PartnerBusy"
    status_code = 409


class HasActiveOrder(OrderDeskError):
    kind = "HasActiveOrder"
    status_code = 409


class AssignmentFailed(OrderDeskError):
    kind = "AssignmentFailed"
    status_code = 500


class Internal(OrderDeskError):
    kind = "Internal"
    status_code = 500
