"""
Customer Records - Domain Models

Entities, enumerations and request records for the customer record
management engine. Entities only ever hold enum members; request records
carry the raw values received from a front-end and are checked by the
validator before they are turned into entities.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, date
from enum import Enum
from typing import Optional, Dict, Any, List

from utils.encryption import mask_value


class CustomerStatus(str, Enum):
    """Customer lifecycle status"""
    PENDING = "Pending"
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    SUSPENDED = "Suspended"
    CLOSED = "Closed"


class AddressType(str, Enum):
    """Postal address type"""
    PHYSICAL = "Physical"
    MAILING = "Mailing"
    BUSINESS = "Business"


class DocumentType(str, Enum):
    """Identification document type"""
    PASSPORT = "Passport"
    DRIVERS_LICENSE = "DriversLicense"
    NATIONAL_ID = "NationalID"
    SSN = "SSN"
    TAX_ID = "TaxID"
    UTILITY_BILL = "UtilityBill"
    BANK_STATEMENT = "BankStatement"

    @property
    def is_identity_document(self) -> bool:
        """True for document types accepted as proof of identity."""
        return self in IDENTITY_DOCUMENT_TYPES


class VerificationStatus(str, Enum):
    """Document verification status"""
    PENDING = "Pending"
    VERIFIED = "Verified"
    EXPIRED = "Expired"
    REJECTED = "Rejected"


IDENTITY_DOCUMENT_TYPES = frozenset({
    DocumentType.PASSPORT,
    DocumentType.DRIVERS_LICENSE,
    DocumentType.NATIONAL_ID,
    DocumentType.SSN,
})


def parse_enum(enum_cls, value: Optional[str]):
    """Return the member of `enum_cls` for `value`, or None if it is not one."""
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


# ==================== ENTITIES ====================

@dataclass
class Customer:
    """
    Customer - identity record and aggregate root.

    `tax_id` holds the plaintext value in memory only; the repository
    encrypts it on write and it is never included in `to_dict()`.
    """
    customer_number: str
    first_name: str
    last_name: str
    date_of_birth: date
    email: str
    id: Optional[uuid.UUID] = None
    middle_name: Optional[str] = None
    tax_id: str = ""
    phone: str = ""
    status: CustomerStatus = CustomerStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: str = "system"
    updated_by: Optional[str] = None
    version: int = 0

    @property
    def full_name(self) -> str:
        """Get full name."""
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "id": str(self.id) if self.id else None,
            "customer_number": self.customer_number,
            "first_name": self.first_name,
            "middle_name": self.middle_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "date_of_birth": _iso(self.date_of_birth),
            "email": self.email,
            "phone": self.phone,
            "has_tax_id": bool(self.tax_id),
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "version": self.version,
        }


@dataclass
class Address:
    """Postal address owned by one customer"""
    customer_id: uuid.UUID
    street1: str
    city: str
    state: str
    postal_code: str
    country: str
    address_type: AddressType = AddressType.PHYSICAL
    id: Optional[uuid.UUID] = None
    street2: Optional[str] = None
    is_primary: bool = False
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "customer_id": str(self.customer_id),
            "address_type": self.address_type.value,
            "street1": self.street1,
            "street2": self.street2,
            "city": self.city,
            "state": self.state,
            "postal_code": self.postal_code,
            "country": self.country,
            "is_primary": self.is_primary,
            "valid_from": _iso(self.valid_from),
            "valid_to": _iso(self.valid_to),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class CustomerDocument:
    """
    Identification document owned by one customer.

    `document_number` is encrypted at rest; responses only carry a masked form.
    """
    customer_id: uuid.UUID
    document_type: DocumentType
    document_number: str
    issuing_authority: str
    issuing_country: str
    issue_date: date
    expiry_date: date
    id: Optional[uuid.UUID] = None
    verification_status: VerificationStatus = VerificationStatus.PENDING
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_verified_identity(self) -> bool:
        return (
            self.document_type.is_identity_document
            and self.verification_status == VerificationStatus.VERIFIED
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "customer_id": str(self.customer_id),
            "document_type": self.document_type.value,
            "document_number_masked": mask_value(self.document_number),
            "issuing_authority": self.issuing_authority,
            "issuing_country": self.issuing_country,
            "issue_date": _iso(self.issue_date),
            "expiry_date": _iso(self.expiry_date),
            "verification_status": self.verification_status.value,
            "verified_at": _iso(self.verified_at),
            "verified_by": self.verified_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class StatusChange:
    """Immutable audit record of one customer status transition"""
    customer_id: uuid.UUID
    previous_status: CustomerStatus
    new_status: CustomerStatus
    reason: str
    changed_by: str
    changed_at: datetime
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "customer_id": str(self.customer_id),
            "previous_status": self.previous_status.value,
            "new_status": self.new_status.value,
            "reason": self.reason,
            "changed_by": self.changed_by,
            "changed_at": _iso(self.changed_at),
        }


@dataclass
class SearchFilters:
    """Conjunctive customer search filters (empty fields are ignored)"""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[CustomerStatus] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    limit: int = 0
    offset: int = 0


@dataclass
class CustomerFullProfile:
    """Customer with its addresses, documents and status history"""
    customer: Customer
    addresses: List[Address] = field(default_factory=list)
    documents: List[CustomerDocument] = field(default_factory=list)
    status_history: List[StatusChange] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer": self.customer.to_dict(),
            "addresses": [a.to_dict() for a in self.addresses],
            "documents": [d.to_dict() for d in self.documents],
            "status_history": [s.to_dict() for s in self.status_history],
        }


@dataclass
class StatusChangeResult:
    """Result of an explicit status change."""
    customer: Customer
    status_change: StatusChange

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer": self.customer.to_dict(),
            "status_change": self.status_change.to_dict(),
        }


# ==================== REQUEST RECORDS ====================

@dataclass
class CreateCustomerRequest:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    date_of_birth: Optional[date] = None
    middle_name: Optional[str] = None
    phone: Optional[str] = None
    tax_id: Optional[str] = None
    tax_country: Optional[str] = None
    created_by: str = "system"


@dataclass
class UpdateCustomerRequest:
    """Partial update: None or empty fields leave the stored value unchanged."""
    id: Optional[uuid.UUID] = None
    version: int = 0
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    tax_id: Optional[str] = None
    tax_country: Optional[str] = None
    updated_by: Optional[str] = None


@dataclass
class AddAddressRequest:
    customer_id: Optional[uuid.UUID] = None
    street1: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""
    address_type: Optional[str] = None
    street2: Optional[str] = None
    is_primary: bool = False
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None


@dataclass
class AddDocumentRequest:
    customer_id: Optional[uuid.UUID] = None
    document_type: str = ""
    document_number: str = ""
    issuing_authority: str = ""
    issuing_country: str = ""
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    submitted_by: str = "system"


@dataclass
class UpdateStatusRequest:
    id: Optional[uuid.UUID] = None
    new_status: str = ""
    reason: str = ""
    changed_by: str = "system"


@dataclass
class SearchCustomersRequest:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    status: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    limit: int = 0
    offset: int = 0
