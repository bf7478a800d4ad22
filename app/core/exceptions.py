class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    pass

class ParseError(BaseServiceError):
    """Raised when a source file or row cannot be read."""
    pass

class ValidationError(BaseServiceError):
    """Raised when data validation fails."""
    pass

class ReferentialInconsistencyError(BaseServiceError):
    """Raised when a template or listing points at taxonomy that is not stored locally."""
    pass

class InvalidStatusTransition(BaseServiceError):
    """Raised when a status change is not allowed by the lifecycle."""
    pass

class ImageFetchError(BaseServiceError):
    """Raised when a single product image cannot be downloaded."""
    pass

class ScraperError(BaseServiceError):
    """Raised when the supplier scraper process fails or emits unusable output."""
    pass

class ImportNotFoundError(BaseServiceError):
    """Raised when an import log is not found."""
    pass

class ProductNotFoundError(BaseServiceError):
    """Raised when product is not found."""
    pass

class PlatformServiceError(BaseServiceError):
    """Base exception for platform service errors."""
    pass

class OLXAPIError(PlatformServiceError):
    """Raised when OLX API calls fail."""

    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload

class OLXAuthenticationError(OLXAPIError):
    """Raised when OLX rejects the shop credentials or token. Not retryable."""
    pass

class OLXNotFoundError(OLXAPIError):
    """Raised when an OLX resource does not exist."""
    pass

class OLXValidationError(OLXAPIError):
    """Raised when OLX rejects a payload (HTTP 422)."""
    pass

class TransientAPIError(OLXAPIError):
    """Raised for network errors, timeouts, rate limits and 5xx responses once retries are exhausted."""
    pass

class TaxonomySyncError(PlatformServiceError):
    """Raised when taxonomy synchronization cannot run at all."""
    pass
