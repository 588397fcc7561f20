"""
Customer Records - Service Layer

Composes the validator and the repository into customer lifecycle
operations:
- Create / update / delete customers
- Add addresses while keeping exactly one primary address
- Add documents, activating Pending customers once a verified identity
  document is on file
- Explicit status changes with an audit record
- Full profile assembly and search

Multi-row operations run inside one repository transaction.
"""

import logging
import uuid
from enum import Enum
from typing import List, Optional

from logging_config import log_customer_event
from utils.clock import Clock, as_utc

from .exceptions import FieldError, ValidationFailedError
from .models import (
    Customer,
    Address,
    CustomerDocument,
    StatusChange,
    SearchFilters,
    CustomerFullProfile,
    StatusChangeResult,
    CustomerStatus,
    AddressType,
    DocumentType,
    VerificationStatus,
    CreateCustomerRequest,
    UpdateCustomerRequest,
    AddAddressRequest,
    AddDocumentRequest,
    UpdateStatusRequest,
    SearchCustomersRequest,
    parse_enum,
)
from .repository import CustomerRepository
from .validator import CustomerValidator

logger = logging.getLogger(__name__)

AUTO_ACTIVATION_REASON = "Automatic activation: verified identity document on file"

UPDATABLE_FIELDS = (
    "first_name", "middle_name", "last_name", "date_of_birth",
    "email", "phone", "tax_id",
)


class CustomerEvent(str, Enum):
    """Audit events written by the service"""
    CREATED = "customer.created"
    UPDATED = "customer.updated"
    DELETED = "customer.deleted"
    STATUS_CHANGED = "customer.status_changed"
    AUTO_ACTIVATED = "customer.auto_activated"
    ADDRESS_ADDED = "address.added"
    DOCUMENT_ADDED = "document.added"


def generate_customer_number() -> str:
    """Human-readable customer number: CUST- and 16 upper-case hex chars."""
    return f"CUST-{uuid.uuid4().hex[:16].upper()}"


def _raise_if_invalid(errors: List[FieldError]) -> None:
    if errors:
        raise ValidationFailedError(errors)


def _require_id(value, field: str = "id") -> None:
    if not value:
        raise ValidationFailedError([FieldError(field, "is required")])


class CustomerService:
    """Customer lifecycle operations"""

    def __init__(
        self,
        repository: CustomerRepository,
        validator: Optional[CustomerValidator] = None,
        clock: Optional[Clock] = None,
    ):
        self.repository = repository
        self.clock = clock or Clock()
        self.validator = validator or CustomerValidator(self.clock)

    # ==================== CUSTOMERS ====================

    async def create_customer(self, req: CreateCustomerRequest) -> Customer:
        """
        Create a customer in Pending status.

        Raises:
            ValidationFailedError: with every violated field
        """
        _raise_if_invalid(self.validator.validate_customer_create(req))

        customer = Customer(
            customer_number=generate_customer_number(),
            first_name=req.first_name,
            middle_name=req.middle_name or None,
            last_name=req.last_name,
            date_of_birth=req.date_of_birth,
            email=req.email,
            phone=req.phone or "",
            tax_id=req.tax_id or "",
            status=CustomerStatus.PENDING,
            created_by=req.created_by or "system",
        )
        customer = await self.repository.create_customer(customer)

        logger.info(f"Created customer {customer.id} ({customer.customer_number})")
        log_customer_event(
            CustomerEvent.CREATED, customer.id,
            customer_number=customer.customer_number,
            status=customer.status,
            actor=customer.created_by,
        )
        return customer

    async def get_customer(self, customer_id: uuid.UUID) -> Customer:
        _require_id(customer_id)
        return await self.repository.get_customer_by_id(customer_id)

    async def get_customer_by_number(self, customer_number: str) -> Customer:
        _require_id(customer_number, "customer_number")
        return await self.repository.get_customer_by_number(customer_number)

    async def update_customer(self, req: UpdateCustomerRequest) -> Customer:
        """
        Apply a partial update.

        Only fields present in the request change. The request's version must
        match the stored version.

        Raises:
            ValidationFailedError, RecordNotFoundError, OptimisticLockError
        """
        _raise_if_invalid(self.validator.validate_customer_update(req))

        customer = await self.repository.get_customer_by_id(req.id)

        changed = []
        for field in UPDATABLE_FIELDS:
            value = getattr(req, field)
            if value is None or value == "":
                continue
            setattr(customer, field, value)
            changed.append(field)

        customer.version = req.version
        customer.updated_by = req.updated_by or "system"
        customer = await self.repository.update_customer(customer)

        log_customer_event(
            CustomerEvent.UPDATED, customer.id,
            changed_fields=changed,
            version=customer.version,
            actor=customer.updated_by,
        )
        return customer

    async def delete_customer(self, customer_id: uuid.UUID, actor: str = "system") -> None:
        """Administrative hard delete."""
        _require_id(customer_id)
        await self.repository.delete_customer(customer_id)
        logger.warning(f"Customer {customer_id} deleted by {actor}")
        log_customer_event(CustomerEvent.DELETED, customer_id, actor=actor)

    async def search_customers(self, req: SearchCustomersRequest) -> List[Customer]:
        _raise_if_invalid(self.validator.validate_search_filters(req))

        filters = SearchFilters(
            first_name=req.first_name or None,
            last_name=req.last_name or None,
            email=req.email or None,
            phone=req.phone or None,
            status=parse_enum(CustomerStatus, req.status) if req.status else None,
            from_date=as_utc(req.from_date),
            to_date=as_utc(req.to_date),
            limit=req.limit,
            offset=req.offset,
        )
        return await self.repository.search_customers(filters)

    # ==================== STATUS ====================

    async def _apply_status_change(
        self,
        repo: CustomerRepository,
        customer: Customer,
        new_status: CustomerStatus,
        reason: str,
        actor: str,
    ) -> StatusChange:
        """Versioned status update followed by its audit record."""
        previous_status = customer.status
        previous_updated_by = customer.updated_by
        customer.status = new_status
        customer.updated_by = actor
        try:
            await repo.update_customer(customer)
        except Exception:
            customer.status = previous_status
            customer.updated_by = previous_updated_by
            raise

        change = StatusChange(
            customer_id=customer.id,
            previous_status=previous_status,
            new_status=new_status,
            reason=reason,
            changed_by=actor,
            changed_at=self.clock.now(),
        )
        await repo.add_status_change(change)
        return change

    async def update_customer_status(self, req: UpdateStatusRequest) -> StatusChangeResult:
        """
        Move a customer along the status state machine.

        Raises:
            ValidationFailedError, RecordNotFoundError,
            InvalidStatusTransitionError, OptimisticLockError
        """
        _raise_if_invalid(self.validator.validate_status_change(req))
        new_status = CustomerStatus(req.new_status)
        actor = req.changed_by or "system"

        async with self.repository.transaction() as repo:
            customer = await repo.get_customer_by_id(req.id)
            self.validator.validate_status_transition(customer.status, new_status)
            change = await self._apply_status_change(repo, customer, new_status, req.reason, actor)

        logger.info(
            f"Customer {customer.id} status {change.previous_status.value} -> {change.new_status.value}"
        )
        log_customer_event(
            CustomerEvent.STATUS_CHANGED, customer.id,
            previous_status=change.previous_status,
            new_status=change.new_status,
            reason=change.reason,
            actor=actor,
        )
        return StatusChangeResult(customer=customer, status_change=change)

    # ==================== ADDRESSES ====================

    async def add_address(self, req: AddAddressRequest) -> Address:
        """
        Add an address, keeping one primary address per customer.

        A new primary address demotes the existing primary; the first
        address a customer gets is always primary.
        """
        _raise_if_invalid(self.validator.validate_address(req))
        address_type = parse_enum(AddressType, req.address_type) or AddressType.PHYSICAL

        async with self.repository.transaction() as repo:
            await repo.get_customer_by_id(req.customer_id)
            existing = await repo.get_customer_addresses(req.customer_id)

            is_primary = req.is_primary
            if is_primary:
                for current in existing:
                    if current.is_primary:
                        current.is_primary = False
                        await repo.update_address(current)
            elif not any(a.is_primary for a in existing):
                is_primary = True

            address = Address(
                customer_id=req.customer_id,
                address_type=address_type,
                street1=req.street1,
                street2=req.street2 or None,
                city=req.city,
                state=req.state,
                postal_code=req.postal_code,
                country=req.country.upper(),
                is_primary=is_primary,
                valid_from=as_utc(req.valid_from),
                valid_to=as_utc(req.valid_to),
            )
            address = await repo.add_address(address)

        log_customer_event(
            CustomerEvent.ADDRESS_ADDED, req.customer_id,
            address_id=address.id,
            address_type=address.address_type,
            is_primary=address.is_primary,
        )
        return address

    async def list_addresses(self, customer_id: uuid.UUID) -> List[Address]:
        _require_id(customer_id, "customer_id")
        await self.repository.get_customer_by_id(customer_id)
        return await self.repository.get_customer_addresses(customer_id)

    # ==================== DOCUMENTS ====================

    async def add_document(self, req: AddDocumentRequest) -> CustomerDocument:
        """
        Record a submitted identification document.

        The document starts in Pending verification. A Pending customer whose
        document set already holds a verified identity document is activated
        through the same versioned path as an explicit status change.
        """
        _raise_if_invalid(self.validator.validate_document(req))
        actor = req.submitted_by or "system"
        activation: Optional[StatusChange] = None

        async with self.repository.transaction() as repo:
            customer = await repo.get_customer_by_id(req.customer_id)

            document = CustomerDocument(
                customer_id=req.customer_id,
                document_type=DocumentType(req.document_type),
                document_number=req.document_number,
                issuing_authority=req.issuing_authority,
                issuing_country=req.issuing_country.upper(),
                issue_date=req.issue_date,
                expiry_date=req.expiry_date,
                verification_status=VerificationStatus.PENDING,
            )
            document = await repo.add_document(document)

            if customer.status == CustomerStatus.PENDING:
                documents = await repo.get_customer_documents(customer.id)
                if any(d.is_verified_identity for d in documents):
                    activation = await self._apply_status_change(
                        repo, customer, CustomerStatus.ACTIVE, AUTO_ACTIVATION_REASON, actor
                    )

        log_customer_event(
            CustomerEvent.DOCUMENT_ADDED, req.customer_id,
            document_id=document.id,
            document_type=document.document_type,
            actor=actor,
        )
        if activation is not None:
            logger.info(f"Customer {customer.id} auto-activated on verified identity document")
            log_customer_event(
                CustomerEvent.AUTO_ACTIVATED, customer.id,
                previous_status=activation.previous_status,
                new_status=activation.new_status,
                actor=actor,
            )
        return document

    async def list_documents(self, customer_id: uuid.UUID) -> List[CustomerDocument]:
        _require_id(customer_id, "customer_id")
        await self.repository.get_customer_by_id(customer_id)
        return await self.repository.get_customer_documents(customer_id)

    # ==================== PROFILE ====================

    async def get_customer_full_profile(self, customer_id: uuid.UUID) -> CustomerFullProfile:
        """Customer with addresses, documents and status history."""
        _require_id(customer_id)
        customer = await self.repository.get_customer_by_id(customer_id)
        return CustomerFullProfile(
            customer=customer,
            addresses=await self.repository.get_customer_addresses(customer_id),
            documents=await self.repository.get_customer_documents(customer_id),
            status_history=await self.repository.get_status_history(customer_id),
        )
