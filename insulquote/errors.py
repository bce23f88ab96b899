"""
Error taxonomy for the quoting core.

Every error carries enough lineage context (quote number, version, observed
status) for a caller to decide whether reloading and retrying makes sense.
Routers turn these into HTTP responses via to_dict().
"""


class QuoteError(Exception):
    """Base for all quoting core failures."""

    code = "quote_error"

    def __init__(self, message: str, quote_number: str = None, version: int = None,
                 current_status: str = None):
        super().__init__(message)
        self.message = message
        self.quote_number = quote_number
        self.version = version
        self.current_status = current_status

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.code, "message": self.message}
        if self.quote_number is not None:
            body["quote_number"] = self.quote_number
        if self.version is not None:
            body["version"] = self.version
        if self.current_status is not None:
            body["current_status"] = self.current_status
        return body


class InvalidInput(QuoteError):
    """Bad area, waste, bale size, or a missing actor."""
    code = "invalid_input"


class InvalidPricingTier(QuoteError):
    """Unknown tier, or a Custom tier without its percent."""
    code = "invalid_pricing_tier"


class InvalidState(QuoteError):
    """Transition not allowed from the version's current status."""
    code = "invalid_state"


class ConcurrentModification(QuoteError):
    """Lost a race on the lineage. Reload and retry."""
    code = "concurrent_modification"


class PersistenceFailure(QuoteError):
    """Opaque storage error. The unit of work was rolled back."""
    code = "persistence_failure"


class NotFound(QuoteError):
    code = "not_found"
