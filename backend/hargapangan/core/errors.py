"""Domain errors raised by services and rendered by the API layer"""


class PriceServiceError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code.replace("_", " "))
        self.message = message or self.code.replace("_", " ")


class UpstreamUnavailable(PriceServiceError):
    """External price API unreachable, timed out or malformed after retries."""
    status_code = 503
    code = "upstream_unavailable"


class NotFound(PriceServiceError):
    status_code = 404
    code = "not_found"


class CommodityNotFound(NotFound):
    code = "commodity_not_found"


class NoCurrentPrice(NotFound):
    code = "no_current_price"


class OverrideNotFound(NotFound):
    code = "override_not_found"


class MarketPriceNotFound(NotFound):
    code = "market_price_not_found"


class AlreadyProcessed(PriceServiceError):
    status_code = 409
    code = "already_processed"


class InvalidDecision(PriceServiceError):
    status_code = 400
    code = "invalid_decision"


class ValidationFailed(PriceServiceError):
    status_code = 422
    code = "validation_failed"


class AuthenticationFailed(PriceServiceError):
    status_code = 401
    code = "authentication_failed"


class PermissionDenied(PriceServiceError):
    status_code = 403
    code = "permission_denied"
