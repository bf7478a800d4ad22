"""
Core module exports.
"""
from .enums import (
    ImportSource,
    ImportStatus,
    ImportPhase,
    ImportedProductStatus,
    ListingStatus,
    MembershipRole,
    Currency,
)

from .exceptions import (
    BaseServiceError,
    ParseError,
    ValidationError,
    ReferentialInconsistencyError,
    InvalidStatusTransition,
    ImageFetchError,
    ScraperError,
    PlatformServiceError,
    OLXAPIError,
    OLXAuthenticationError,
    OLXNotFoundError,
    OLXValidationError,
    TransientAPIError,
    TaxonomySyncError,
)
