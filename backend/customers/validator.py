"""
Customer Records - Validator

Stateless rule checks for create/update payloads, address and document
payloads, search filters and status changes. Every `validate_*` method
returns the full list of `FieldError`s (empty list = valid) and never
touches storage.
"""

import re
from datetime import date
from typing import Optional, List, Dict, FrozenSet

from utils.clock import Clock, as_utc

from .exceptions import FieldError, InvalidStatusTransitionError
from .models import (
    CustomerStatus,
    AddressType,
    DocumentType,
    CreateCustomerRequest,
    UpdateCustomerRequest,
    AddAddressRequest,
    AddDocumentRequest,
    UpdateStatusRequest,
    SearchCustomersRequest,
    parse_enum,
)


EMAIL_REGEX = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

# International format: optional +, no leading zero, 2-15 digits
PHONE_REGEX = re.compile(r"^\+?[1-9]\d{1,14}$")

US_SSN_REGEX = re.compile(r"^\d{3}-\d{2}-\d{4}$")
UK_NINO_REGEX = re.compile(r"^[A-Z]{2}\d{6}[A-Z]$")
EU_TAX_ID_REGEX = re.compile(r"^[A-Z]{2}\d{8,12}$")
GENERIC_TAX_ID_REGEX = re.compile(r"^[A-Z0-9]+(?:-[A-Z0-9]+)*$")

TAX_ID_PATTERNS = {
    "US": (US_SSN_REGEX, "invalid US SSN format (XXX-XX-XXXX)"),
    "GB": (UK_NINO_REGEX, "invalid UK NINO format"),
    "UK": (UK_NINO_REGEX, "invalid UK NINO format"),
    "DE": (EU_TAX_ID_REGEX, "invalid EU tax ID format"),
    "FR": (EU_TAX_ID_REGEX, "invalid EU tax ID format"),
    "IT": (EU_TAX_ID_REGEX, "invalid EU tax ID format"),
    "ES": (EU_TAX_ID_REGEX, "invalid EU tax ID format"),
}

COUNTRY_CODE_REGEX = re.compile(r"^[A-Za-z]{2}$")

MIN_CUSTOMER_AGE = 18
MAX_CUSTOMER_AGE = 150
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
MAX_SEARCH_LIMIT = 100

ALLOWED_TRANSITIONS: Dict[CustomerStatus, FrozenSet[CustomerStatus]] = {
    CustomerStatus.PENDING: frozenset({CustomerStatus.ACTIVE, CustomerStatus.CLOSED}),
    CustomerStatus.ACTIVE: frozenset({
        CustomerStatus.INACTIVE, CustomerStatus.SUSPENDED, CustomerStatus.CLOSED,
    }),
    CustomerStatus.INACTIVE: frozenset({
        CustomerStatus.ACTIVE, CustomerStatus.SUSPENDED, CustomerStatus.CLOSED,
    }),
    CustomerStatus.SUSPENDED: frozenset({
        CustomerStatus.ACTIVE, CustomerStatus.INACTIVE, CustomerStatus.CLOSED,
    }),
    CustomerStatus.CLOSED: frozenset(),
}


def years_before(day: date, years: int) -> date:
    """Same calendar day `years` earlier; Feb 29 falls back to Feb 28."""
    try:
        return day.replace(year=day.year - years)
    except ValueError:
        return day.replace(year=day.year - years, day=28)


def can_transition(current: CustomerStatus, requested: CustomerStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_status_transition(current: CustomerStatus, requested: CustomerStatus) -> None:
    """
    Check one edge of the status state machine.

    Raises:
        InvalidStatusTransitionError: if `requested` is not reachable from `current`
    """
    if not can_transition(current, requested):
        raise InvalidStatusTransitionError(
            getattr(current, "value", str(current)),
            getattr(requested, "value", str(requested)),
        )


class CustomerValidator:
    """
    Rule checker for customer payloads.

    The clock is injected so age and expiry rules can be evaluated at a
    fixed instant.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or Clock()

    # ==================== FIELD RULES ====================

    def _check_name(self, errors: List[FieldError], field: str, value: Optional[str], required: bool):
        if not value:
            if required:
                errors.append(FieldError(field, "is required"))
            return
        if not NAME_MIN_LENGTH <= len(value) <= NAME_MAX_LENGTH:
            errors.append(FieldError(
                field, f"must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"
            ))

    def _check_email(self, errors: List[FieldError], value: Optional[str], required: bool):
        if not value:
            if required:
                errors.append(FieldError("email", "is required"))
            return
        if not EMAIL_REGEX.match(value):
            errors.append(FieldError("email", "is invalid format"))

    def _check_phone(self, errors: List[FieldError], value: Optional[str]):
        if value and not PHONE_REGEX.match(value):
            errors.append(FieldError(
                "phone", "is invalid format. Use international format e.g., +1234567890"
            ))

    def _check_date_of_birth(self, errors: List[FieldError], value: Optional[date], required: bool):
        if value is None:
            if required:
                errors.append(FieldError("date_of_birth", "is required"))
            return
        today = self.clock.today()
        if value > years_before(today, MIN_CUSTOMER_AGE):
            errors.append(FieldError(
                "date_of_birth", f"customer must be at least {MIN_CUSTOMER_AGE} years old"
            ))
        if value < years_before(today, MAX_CUSTOMER_AGE):
            errors.append(FieldError("date_of_birth", "date of birth is too far in the past"))

    def validate_tax_id(self, tax_id: str, country: Optional[str] = None) -> Optional[FieldError]:
        """Check a tax identifier, using the country pattern when one is known."""
        if not 5 <= len(tax_id) <= 50:
            return FieldError("tax_id", "must be between 5 and 50 characters")

        pattern, message = TAX_ID_PATTERNS.get(
            (country or "").upper(), (GENERIC_TAX_ID_REGEX, "invalid tax ID format")
        )
        if not pattern.match(tax_id):
            return FieldError("tax_id", message)
        return None

    def _check_tax_id(self, errors: List[FieldError], tax_id: Optional[str], country: Optional[str]):
        if not tax_id:
            return
        error = self.validate_tax_id(tax_id, country)
        if error:
            errors.append(error)

    def _check_country(self, errors: List[FieldError], field: str, value: Optional[str]):
        if not value:
            errors.append(FieldError(field, "is required"))
        elif not COUNTRY_CODE_REGEX.match(value):
            errors.append(FieldError(field, "must be a 2-letter ISO country code"))

    @staticmethod
    def _check_required_text(errors: List[FieldError], field: str, value: Optional[str], max_length: int):
        if not value:
            errors.append(FieldError(field, "is required"))
        elif len(value) > max_length:
            errors.append(FieldError(field, f"must not exceed {max_length} characters"))

    # ==================== PAYLOADS ====================

    def validate_customer_create(self, req: CreateCustomerRequest) -> List[FieldError]:
        errors: List[FieldError] = []
        self._check_name(errors, "first_name", req.first_name, required=True)
        self._check_name(errors, "middle_name", req.middle_name, required=False)
        self._check_name(errors, "last_name", req.last_name, required=True)
        self._check_email(errors, req.email, required=True)
        self._check_phone(errors, req.phone)
        self._check_date_of_birth(errors, req.date_of_birth, required=True)
        self._check_tax_id(errors, req.tax_id, req.tax_country)
        return errors

    def validate_customer_update(self, req: UpdateCustomerRequest) -> List[FieldError]:
        errors: List[FieldError] = []
        if not req.id:
            errors.append(FieldError("id", "is required"))
        if not req.version or req.version < 1:
            errors.append(FieldError("version", "is required for optimistic locking"))
        self._check_name(errors, "first_name", req.first_name, required=False)
        self._check_name(errors, "middle_name", req.middle_name, required=False)
        self._check_name(errors, "last_name", req.last_name, required=False)
        self._check_email(errors, req.email, required=False)
        self._check_phone(errors, req.phone)
        self._check_date_of_birth(errors, req.date_of_birth, required=False)
        self._check_tax_id(errors, req.tax_id, req.tax_country)
        return errors

    def validate_address(self, req: AddAddressRequest) -> List[FieldError]:
        errors: List[FieldError] = []
        if not req.customer_id:
            errors.append(FieldError("customer_id", "is required"))
        self._check_required_text(errors, "street1", req.street1, 200)
        if req.street2 and len(req.street2) > 200:
            errors.append(FieldError("street2", "must not exceed 200 characters"))
        self._check_required_text(errors, "city", req.city, 100)
        self._check_required_text(errors, "state", req.state, 100)
        self._check_required_text(errors, "postal_code", req.postal_code, 20)
        self._check_country(errors, "country", req.country)
        if req.address_type and parse_enum(AddressType, req.address_type) is None:
            errors.append(FieldError("address_type", "must be Physical, Mailing, or Business"))
        if req.valid_from and req.valid_to and as_utc(req.valid_to) < as_utc(req.valid_from):
            errors.append(FieldError("valid_to", "must not be before valid_from"))
        return errors

    def validate_document(self, req: AddDocumentRequest) -> List[FieldError]:
        errors: List[FieldError] = []
        if not req.customer_id:
            errors.append(FieldError("customer_id", "is required"))

        if not req.document_type:
            errors.append(FieldError("document_type", "is required"))
        elif parse_enum(DocumentType, req.document_type) is None:
            errors.append(FieldError("document_type", "is invalid document type"))

        self._check_required_text(errors, "document_number", req.document_number, 50)
        self._check_country(errors, "issuing_country", req.issuing_country)
        if not req.issuing_authority:
            errors.append(FieldError("issuing_authority", "is required"))

        if req.issue_date is None:
            errors.append(FieldError("issue_date", "is required"))

        if req.expiry_date is None:
            errors.append(FieldError("expiry_date", "is required"))
        else:
            if req.expiry_date <= self.clock.today():
                errors.append(FieldError("expiry_date", "must be in the future"))
            if req.issue_date is not None and req.expiry_date <= req.issue_date:
                errors.append(FieldError("expiry_date", "must be after issue date"))
        return errors

    def validate_search_filters(self, req: SearchCustomersRequest) -> List[FieldError]:
        errors: List[FieldError] = []
        if req.limit < 0:
            errors.append(FieldError("limit", "must be non-negative"))
        if req.limit > MAX_SEARCH_LIMIT:
            errors.append(FieldError("limit", f"must not exceed {MAX_SEARCH_LIMIT}"))
        if req.offset < 0:
            errors.append(FieldError("offset", "must be non-negative"))
        if req.status and parse_enum(CustomerStatus, req.status) is None:
            errors.append(FieldError("status", "is invalid status"))
        if req.email and not EMAIL_REGEX.match(req.email):
            errors.append(FieldError("email", "is invalid format"))
        if req.phone and not PHONE_REGEX.match(req.phone):
            errors.append(FieldError("phone", "is invalid format"))
        if req.from_date and req.to_date and as_utc(req.from_date) > as_utc(req.to_date):
            errors.append(FieldError("from_date", "must not be after to_date"))
        return errors

    def validate_status_change(self, req: UpdateStatusRequest) -> List[FieldError]:
        errors: List[FieldError] = []
        if not req.id:
            errors.append(FieldError("id", "is required"))
        if not req.new_status:
            errors.append(FieldError("new_status", "is required"))
        elif parse_enum(CustomerStatus, req.new_status) is None:
            errors.append(FieldError("new_status", "is invalid status"))
        if not req.reason or not req.reason.strip():
            errors.append(FieldError("reason", "is required"))
        return errors

    def validate_status_transition(self, current: CustomerStatus, requested: CustomerStatus) -> None:
        validate_status_transition(current, requested)
