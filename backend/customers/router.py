"""
Customer Records API Router

Thin HTTP front-end over CustomerService.

Endpoints:
- POST   /api/v1/customers                      - Create customer
- GET    /api/v1/customers                      - Search customers
- GET    /api/v1/customers/by-number/{number}   - Get customer by customer number
- GET    /api/v1/customers/{id}                 - Get customer
- PUT    /api/v1/customers/{id}                 - Update customer (requires version)
- DELETE /api/v1/customers/{id}                 - Administrative delete
- POST   /api/v1/customers/{id}/status          - Change status
- POST   /api/v1/customers/{id}/addresses       - Add address
- GET    /api/v1/customers/{id}/addresses       - List addresses
- POST   /api/v1/customers/{id}/documents       - Add document
- GET    /api/v1/customers/{id}/documents       - List documents
- GET    /api/v1/customers/{id}/profile         - Full profile

The caller identity is taken from the X-Actor header (default "system").
Domain errors are mapped to HTTP responses by the application's exception
handlers. Tax ids and document numbers never appear in responses.
"""

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, status
from pydantic import BaseModel, Field

from database.executor import EngineExecutor
from logging_config import set_request_context, get_request_id
from utils.validation_errors import parse_uuid

from .models import (
    CreateCustomerRequest,
    UpdateCustomerRequest,
    AddAddressRequest,
    AddDocumentRequest,
    UpdateStatusRequest,
    SearchCustomersRequest,
)
from .repository import CustomerRepository
from .service import CustomerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/customers", tags=["Customers"])


# ==================== DEPENDENCIES ====================

def get_customer_service(request: Request) -> CustomerService:
    """Build the service from the engine and cipher held on app.state."""
    state = request.app.state
    timeout = state.settings.DB_STATEMENT_TIMEOUT_SECONDS or None
    repository = CustomerRepository(EngineExecutor(state.engine, statement_timeout=timeout), state.cipher)
    return CustomerService(repository)


async def get_actor(x_actor: Optional[str] = Header(None)) -> str:
    actor = (x_actor or "").strip() or "system"
    set_request_context(get_request_id(), actor)
    return actor


# ==================== REQUEST MODELS ====================

class CreateCustomerBody(BaseModel):
    """Request to create a customer."""
    first_name: str = Field("", description="Given name (2-100 chars)")
    last_name: str = Field("", description="Family name (2-100 chars)")
    email: str = Field("", description="Email address")
    date_of_birth: Optional[date] = Field(None, description="Date of birth; customer must be 18+")
    middle_name: Optional[str] = None
    phone: Optional[str] = Field(None, description="International format, e.g. +14155550100")
    tax_id: Optional[str] = Field(None, description="Tax identifier (stored encrypted)")
    tax_country: Optional[str] = Field(None, description="ISO country selecting the tax id format")

    class Config:
        json_schema_extra = {
            "example": {
                "first_name": "Ada",
                "last_name": "Lovelace",
                "email": "ada@example.com",
                "date_of_birth": "1990-12-10",
                "phone": "+14155550100",
                "tax_id": "123-45-6789",
            }
        }


class UpdateCustomerBody(BaseModel):
    """Partial update; omitted fields keep their stored value."""
    version: int = Field(0, description="Version read by the caller")
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    date_of_birth: Optional[date] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    tax_id: Optional[str] = None
    tax_country: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "version": 1,
                "email": "ada.lovelace@example.com",
            }
        }


class UpdateStatusBody(BaseModel):
    """Request to move a customer to a new status."""
    new_status: str = Field("", description="Pending, Active, Inactive, Suspended or Closed")
    reason: str = Field("", description="Why the status changes")


class AddAddressBody(BaseModel):
    """Request to add an address."""
    street1: str = ""
    street2: Optional[str] = None
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = Field("", description="ISO 3166-1 alpha-2 code")
    address_type: Optional[str] = Field(None, description="Physical, Mailing or Business")
    is_primary: bool = False
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None


class AddDocumentBody(BaseModel):
    """Request to add an identification document."""
    document_type: str = Field("", description="Passport, DriversLicense, NationalID, SSN, TaxID, UtilityBill or BankStatement")
    document_number: str = Field("", description="Stored encrypted, returned masked")
    issuing_authority: str = ""
    issuing_country: str = Field("", description="ISO 3166-1 alpha-2 code")
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None


# ==================== CUSTOMERS ====================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_customer(
    body: CreateCustomerBody,
    service: CustomerService = Depends(get_customer_service),
    actor: str = Depends(get_actor),
):
    customer = await service.create_customer(CreateCustomerRequest(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        date_of_birth=body.date_of_birth,
        middle_name=body.middle_name,
        phone=body.phone,
        tax_id=body.tax_id,
        tax_country=body.tax_country,
        created_by=actor,
    ))
    return customer.to_dict()


@router.get("")
async def search_customers(
    first_name: Optional[str] = Query(None),
    last_name: Optional[str] = Query(None),
    email: Optional[str] = Query(None),
    phone: Optional[str] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    from_date: Optional[datetime] = Query(None, description="Created at or after"),
    to_date: Optional[datetime] = Query(None, description="Created at or before"),
    limit: int = Query(0, description="Page size (0 = default 50, max 100)"),
    offset: int = Query(0),
    service: CustomerService = Depends(get_customer_service),
):
    customers = await service.search_customers(SearchCustomersRequest(
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone=phone,
        status=status_filter,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
        offset=offset,
    ))
    return {
        "customers": [c.to_dict() for c in customers],
        "count": len(customers),
        "limit": limit,
        "offset": offset,
    }


@router.get("/by-number/{customer_number}")
async def get_customer_by_number(
    customer_number: str,
    service: CustomerService = Depends(get_customer_service),
):
    customer = await service.get_customer_by_number(customer_number)
    return customer.to_dict()


@router.get("/{customer_id}")
async def get_customer(
    customer_id: str,
    service: CustomerService = Depends(get_customer_service),
):
    customer = await service.get_customer(parse_uuid(customer_id, "customer_id"))
    return customer.to_dict()


@router.put("/{customer_id}")
async def update_customer(
    customer_id: str,
    body: UpdateCustomerBody,
    service: CustomerService = Depends(get_customer_service),
    actor: str = Depends(get_actor),
):
    customer = await service.update_customer(UpdateCustomerRequest(
        id=parse_uuid(customer_id, "customer_id"),
        version=body.version,
        first_name=body.first_name,
        middle_name=body.middle_name,
        last_name=body.last_name,
        date_of_birth=body.date_of_birth,
        email=body.email,
        phone=body.phone,
        tax_id=body.tax_id,
        tax_country=body.tax_country,
        updated_by=actor,
    ))
    return customer.to_dict()


@router.delete("/{customer_id}")
async def delete_customer(
    customer_id: str,
    service: CustomerService = Depends(get_customer_service),
    actor: str = Depends(get_actor),
):
    parsed_id = parse_uuid(customer_id, "customer_id")
    await service.delete_customer(parsed_id, actor=actor)
    return {"deleted": True, "id": str(parsed_id)}


@router.post("/{customer_id}/status")
async def update_customer_status(
    customer_id: str,
    body: UpdateStatusBody,
    service: CustomerService = Depends(get_customer_service),
    actor: str = Depends(get_actor),
):
    result = await service.update_customer_status(UpdateStatusRequest(
        id=parse_uuid(customer_id, "customer_id"),
        new_status=body.new_status,
        reason=body.reason,
        changed_by=actor,
    ))
    return result.to_dict()


@router.get("/{customer_id}/profile")
async def get_customer_profile(
    customer_id: str,
    service: CustomerService = Depends(get_customer_service),
):
    profile = await service.get_customer_full_profile(parse_uuid(customer_id, "customer_id"))
    return profile.to_dict()


# ==================== ADDRESSES ====================

@router.post("/{customer_id}/addresses", status_code=status.HTTP_201_CREATED)
async def add_address(
    customer_id: str,
    body: AddAddressBody,
    service: CustomerService = Depends(get_customer_service),
):
    address = await service.add_address(AddAddressRequest(
        customer_id=parse_uuid(customer_id, "customer_id"),
        street1=body.street1,
        street2=body.street2,
        city=body.city,
        state=body.state,
        postal_code=body.postal_code,
        country=body.country,
        address_type=body.address_type,
        is_primary=body.is_primary,
        valid_from=body.valid_from,
        valid_to=body.valid_to,
    ))
    return address.to_dict()


@router.get("/{customer_id}/addresses")
async def list_addresses(
    customer_id: str,
    service: CustomerService = Depends(get_customer_service),
):
    addresses = await service.list_addresses(parse_uuid(customer_id, "customer_id"))
    return {"addresses": [a.to_dict() for a in addresses], "count": len(addresses)}


# ==================== DOCUMENTS ====================

@router.post("/{customer_id}/documents", status_code=status.HTTP_201_CREATED)
async def add_document(
    customer_id: str,
    body: AddDocumentBody,
    service: CustomerService = Depends(get_customer_service),
    actor: str = Depends(get_actor),
):
    document = await service.add_document(AddDocumentRequest(
        customer_id=parse_uuid(customer_id, "customer_id"),
        document_type=body.document_type,
        document_number=body.document_number,
        issuing_authority=body.issuing_authority,
        issuing_country=body.issuing_country,
        issue_date=body.issue_date,
        expiry_date=body.expiry_date,
        submitted_by=actor,
    ))
    return document.to_dict()


@router.get("/{customer_id}/documents")
async def list_documents(
    customer_id: str,
    service: CustomerService = Depends(get_customer_service),
):
    documents = await service.list_documents(parse_uuid(customer_id, "customer_id"))
    return {"documents": [d.to_dict() for d in documents], "count": len(documents)}
