from fastapi import HTTPException


class AutoGiftError(HTTPException):
    status_code = 400
    default_detail = "Auto-gift request failed"

    def __init__(self, detail: str | None = None):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)


class TokenNotFoundError(AutoGiftError):
    status_code = 404
    default_detail = "Approval token not found"


class TokenExpiredError(AutoGiftError):
    status_code = 410
    default_detail = "Approval token has expired"


class TokenAlreadyUsedError(AutoGiftError):
    status_code = 409
    default_detail = "Approval token has already been used"


class InvalidTransitionError(AutoGiftError):
    status_code = 409
    default_detail = "Execution is not in a state that allows this action"


class RefundRequiredError(AutoGiftError):
    status_code = 409
    default_detail = "Payment already captured; cancellation requires a refund"


class RetriggerNotAllowedError(AutoGiftError):
    status_code = 409
    default_detail = "An execution for this occasion is still active or already fulfilled"
