"""
ilsws-client: Python client for SirsiDynix Symphony Web Services (ILSWS)

This library provides:
- Compact rule-string validation of field values
- Date normalization to the YYYY-MM-DD form ILSWS expects
- A per-session cache of remote field descriptions
- Patron record construction (aliases, defaults, age-based profiles,
  address blocks and SMS phone lists)
- Patron search, authentication, registration and update calls

Example:
    from ilsws_client import PatronService

    service = PatronService()
    patron_key = service.authenticate_patron_id("21168045918653", "secret")
"""

from .api import PatronService
from .api_client import ApiClient
from .config_loader import ConfigLoader
from .date_normalizer import normalize_date, parse_any_date
from .errors import (
    ApiError,
    ConfigurationError,
    FieldError,
    FieldValidationFailed,
    IlswsError,
    InvalidDateFormat,
    InvalidFieldLength,
    InvalidSetMember,
    MissingRequiredField,
    UnknownWireType,
    UnsupportedRuleKind,
)
from .field_schema import FieldDescriptor, FieldSchema
from .record_builder import RecordBuilder, get_expiration
from .validator import check, validate

__version__ = "0.1.0"
__all__ = [
    "PatronService",
    "ApiClient",
    "ConfigLoader",
    "FieldSchema",
    "FieldDescriptor",
    "RecordBuilder",
    "validate",
    "check",
    "normalize_date",
    "parse_any_date",
    "get_expiration",
    "IlswsError",
    "ConfigurationError",
    "UnsupportedRuleKind",
    "UnknownWireType",
    "FieldError",
    "MissingRequiredField",
    "FieldValidationFailed",
    "InvalidDateFormat",
    "InvalidSetMember",
    "InvalidFieldLength",
    "ApiError",
]
