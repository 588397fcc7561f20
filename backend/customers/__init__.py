"""
Customer record management.

Encrypted persistence with optimistic locking, field validation with a
status state machine, and the service composing them.
"""

from .exceptions import (
    FieldError,
    CustomerCoreError,
    ValidationFailedError,
    RecordNotFoundError,
    ConflictError,
    OptimisticLockError,
    DuplicateRecordError,
    InvalidStatusTransitionError,
    PersistenceError,
    NestedTransactionError,
)
from .models import (
    CustomerStatus,
    AddressType,
    DocumentType,
    VerificationStatus,
    Customer,
    Address,
    CustomerDocument,
    StatusChange,
    SearchFilters,
    CustomerFullProfile,
    StatusChangeResult,
    CreateCustomerRequest,
    UpdateCustomerRequest,
    AddAddressRequest,
    AddDocumentRequest,
    UpdateStatusRequest,
    SearchCustomersRequest,
)
from .validator import CustomerValidator, ALLOWED_TRANSITIONS, can_transition, validate_status_transition
from .repository import CustomerRepository
from .service import CustomerService, generate_customer_number

__all__ = [
    # Errors
    'FieldError',
    'CustomerCoreError',
    'ValidationFailedError',
    'RecordNotFoundError',
    'ConflictError',
    'OptimisticLockError',
    'DuplicateRecordError',
    'InvalidStatusTransitionError',
    'PersistenceError',
    'NestedTransactionError',
    # Models
    'CustomerStatus',
    'AddressType',
    'DocumentType',
    'VerificationStatus',
    'Customer',
    'Address',
    'CustomerDocument',
    'StatusChange',
    'SearchFilters',
    'CustomerFullProfile',
    'StatusChangeResult',
    'CreateCustomerRequest',
    'UpdateCustomerRequest',
    'AddAddressRequest',
    'AddDocumentRequest',
    'UpdateStatusRequest',
    'SearchCustomersRequest',
    # Components
    'CustomerValidator',
    'ALLOWED_TRANSITIONS',
    'can_transition',
    'validate_status_transition',
    'CustomerRepository',
    'CustomerService',
    'generate_customer_number',
]
