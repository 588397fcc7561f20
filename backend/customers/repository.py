"""
Customer Records - Repository

Durable storage for customers, addresses, documents and status changes.

- Tax ids and document numbers are encrypted on write and decrypted on read
- Customer updates use optimistic locking: the UPDATE only matches the row
  when the stored version equals the caller's version
- One implementation serves both plain and transactional use; the
  difference lives entirely in the StatementExecutor it is bound to
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional, List, Dict, Any, AsyncIterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from database.executor import StatementExecutor, ConnectionExecutor
from utils.clock import Clock
from utils.encryption import FieldCipher

from .exceptions import (
    RecordNotFoundError,
    OptimisticLockError,
    DuplicateRecordError,
    PersistenceError,
    NestedTransactionError,
)
from .models import (
    Customer,
    Address,
    CustomerDocument,
    StatusChange,
    SearchFilters,
    CustomerStatus,
    AddressType,
    DocumentType,
    VerificationStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_LIMIT = 50

UNIQUE_VIOLATION_SQLSTATE = "23505"

CUSTOMER_COLUMNS = """
    id, customer_number, first_name, middle_name, last_name,
    date_of_birth, tax_id, email, phone, status,
    created_at, updated_at, created_by, updated_by, version
"""

ADDRESS_COLUMNS = """
    id, customer_id, address_type, street1, street2,
    city, state, postal_code, country, is_primary,
    valid_from, valid_to, created_at, updated_at
"""

DOCUMENT_COLUMNS = """
    id, customer_id, document_type, document_number,
    issuing_authority, issuing_country, issue_date, expiry_date,
    verification_status, verified_at, verified_by, created_at, updated_at
"""

STATUS_CHANGE_COLUMNS = """
    id, customer_id, previous_status, new_status, reason, changed_by, changed_at
"""


def _like(value: str) -> str:
    """Substring pattern for ILIKE with wildcard characters escaped."""
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _is_unique_violation(error: IntegrityError) -> bool:
    orig = error.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code:
        return code == UNIQUE_VIOLATION_SQLSTATE
    return "unique" in str(error).lower() or "duplicate key" in str(error).lower()


def _enum(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError as e:
        raise PersistenceError(f"unexpected {enum_cls.__name__} value in database: {value!r}") from e


class CustomerRepository:
    """
    Customer repository over raw parameterized SQL.

    Safe for concurrent use: it holds only the executor, the cipher and the
    clock, none of which change after construction.
    """

    def __init__(self, executor: StatementExecutor, cipher: FieldCipher, clock: Optional[Clock] = None):
        self.executor = executor
        self.cipher = cipher
        self.clock = clock or Clock()

    @property
    def in_transaction(self) -> bool:
        return getattr(self.executor, "in_transaction", False)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["CustomerRepository"]:
        """
        Open a unit of work.

        Yields a repository bound to one connection; commits when the block
        exits cleanly and rolls back if it raises.

        Raises:
            NestedTransactionError: if this repository is already transactional
        """
        if self.in_transaction:
            raise NestedTransactionError()

        engine = self.executor.engine
        try:
            async with engine.begin() as connection:
                yield CustomerRepository(ConnectionExecutor(connection), self.cipher, self.clock)
        except (SQLAlchemyError, asyncio.TimeoutError) as e:
            logger.error(f"Transaction failed: {type(e).__name__}")
            raise PersistenceError(f"transaction failed: {e}") from e

    # ==================== STATEMENT HELPERS ====================

    async def _fetch_one(self, operation: str, sql: str, params: Dict[str, Any]):
        try:
            return await self.executor.fetch_one(sql, params)
        except (SQLAlchemyError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to {operation}: {type(e).__name__}")
            raise PersistenceError(f"failed to {operation}: {e}") from e

    async def _fetch_all(self, operation: str, sql: str, params: Dict[str, Any]):
        try:
            return await self.executor.fetch_all(sql, params)
        except (SQLAlchemyError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to {operation}: {type(e).__name__}")
            raise PersistenceError(f"failed to {operation}: {e}") from e

    async def _execute(self, operation: str, sql: str, params: Dict[str, Any], entity_type: str = "record") -> int:
        try:
            return await self.executor.execute(sql, params)
        except IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateRecordError(entity_type, "unique constraint violated") from e
            logger.error(f"Failed to {operation}: integrity error")
            raise PersistenceError(f"failed to {operation}: {e}") from e
        except (SQLAlchemyError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to {operation}: {type(e).__name__}")
            raise PersistenceError(f"failed to {operation}: {e}") from e

    # ==================== ROW MAPPING ====================

    def _customer_from_row(self, row) -> Customer:
        return Customer(
            id=row.id,
            customer_number=row.customer_number,
            first_name=row.first_name,
            middle_name=row.middle_name,
            last_name=row.last_name,
            date_of_birth=row.date_of_birth,
            tax_id=self.cipher.decrypt(row.tax_id or ""),
            email=row.email,
            phone=row.phone or "",
            status=_enum(CustomerStatus, row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
            created_by=row.created_by,
            updated_by=row.updated_by,
            version=row.version,
        )

    @staticmethod
    def _address_from_row(row) -> Address:
        return Address(
            id=row.id,
            customer_id=row.customer_id,
            address_type=_enum(AddressType, row.address_type),
            street1=row.street1,
            street2=row.street2,
            city=row.city,
            state=row.state,
            postal_code=row.postal_code,
            country=row.country,
            is_primary=row.is_primary,
            valid_from=row.valid_from,
            valid_to=row.valid_to,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _document_from_row(self, row) -> CustomerDocument:
        return CustomerDocument(
            id=row.id,
            customer_id=row.customer_id,
            document_type=_enum(DocumentType, row.document_type),
            document_number=self.cipher.decrypt(row.document_number or ""),
            issuing_authority=row.issuing_authority,
            issuing_country=row.issuing_country,
            issue_date=row.issue_date,
            expiry_date=row.expiry_date,
            verification_status=_enum(VerificationStatus, row.verification_status),
            verified_at=row.verified_at,
            verified_by=row.verified_by,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _status_change_from_row(row) -> StatusChange:
        return StatusChange(
            id=row.id,
            customer_id=row.customer_id,
            previous_status=_enum(CustomerStatus, row.previous_status),
            new_status=_enum(CustomerStatus, row.new_status),
            reason=row.reason,
            changed_by=row.changed_by,
            changed_at=row.changed_at,
        )

    def _customer_params(self, customer: Customer) -> Dict[str, Any]:
        return {
            "id": customer.id,
            "customer_number": customer.customer_number,
            "first_name": customer.first_name,
            "middle_name": customer.middle_name,
            "last_name": customer.last_name,
            "date_of_birth": customer.date_of_birth,
            "tax_id": self.cipher.encrypt(customer.tax_id or ""),
            "email": customer.email,
            "phone": customer.phone or "",
            "status": customer.status.value,
            "created_at": customer.created_at,
            "updated_at": customer.updated_at,
            "created_by": customer.created_by,
            "updated_by": customer.updated_by,
            "version": customer.version,
        }

    # ==================== CUSTOMERS ====================

    async def create_customer(self, customer: Customer) -> Customer:
        """
        Insert a new customer.

        Assigns an id when missing, sets version 1 and both timestamps.

        Raises:
            DuplicateRecordError: customer number already taken
        """
        if customer.id is None:
            customer.id = uuid.uuid4()
        now = self.clock.now()
        customer.created_at = now
        customer.updated_at = now
        customer.version = 1

        await self._execute("create customer", """
            INSERT INTO customers (
                id, customer_number, first_name, middle_name, last_name,
                date_of_birth, tax_id, email, phone, status,
                created_at, updated_at, created_by, updated_by, version
            ) VALUES (
                :id, :customer_number, :first_name, :middle_name, :last_name,
                :date_of_birth, :tax_id, :email, :phone, :status,
                :created_at, :updated_at, :created_by, :updated_by, :version
            )
        """, self._customer_params(customer), entity_type="customer")

        return customer

    async def get_customer_by_id(self, customer_id: uuid.UUID) -> Customer:
        row = await self._fetch_one("get customer", f"""
            SELECT {CUSTOMER_COLUMNS}
            FROM customers
            WHERE id = :id
        """, {"id": customer_id})

        if row is None:
            raise RecordNotFoundError("customer", customer_id)
        return self._customer_from_row(row)

    async def get_customer_by_number(self, customer_number: str) -> Customer:
        row = await self._fetch_one("get customer", f"""
            SELECT {CUSTOMER_COLUMNS}
            FROM customers
            WHERE customer_number = :customer_number
        """, {"customer_number": customer_number})

        if row is None:
            raise RecordNotFoundError("customer", customer_number)
        return self._customer_from_row(row)

    async def update_customer(self, customer: Customer) -> Customer:
        """
        Persist changes with an optimistic version check.

        `customer.version` must be the version the caller read. On success it
        is incremented by one; on a conflict the object is left as it was.

        Raises:
            OptimisticLockError: the stored version has moved on
        """
        expected_version = customer.version
        previous_updated_at = customer.updated_at
        customer.version = expected_version + 1
        customer.updated_at = self.clock.now()

        params = self._customer_params(customer)
        params["expected_version"] = expected_version
        try:
            rowcount = await self._execute("update customer", """
                UPDATE customers SET
                    customer_number = :customer_number,
                    first_name = :first_name,
                    middle_name = :middle_name,
                    last_name = :last_name,
                    date_of_birth = :date_of_birth,
                    tax_id = :tax_id,
                    email = :email,
                    phone = :phone,
                    status = :status,
                    updated_at = :updated_at,
                    updated_by = :updated_by,
                    version = :version
                WHERE id = :id AND version = :expected_version
            """, params, entity_type="customer")
        except Exception:
            customer.version = expected_version
            customer.updated_at = previous_updated_at
            raise

        if rowcount == 0:
            customer.version = expected_version
            customer.updated_at = previous_updated_at
            logger.warning(
                f"Optimistic lock conflict on customer {customer.id} at version {expected_version}"
            )
            raise OptimisticLockError("customer", customer.id, expected_version)

        return customer

    async def delete_customer(self, customer_id: uuid.UUID) -> None:
        """Administrative hard delete; addresses and documents cascade."""
        rowcount = await self._execute(
            "delete customer", "DELETE FROM customers WHERE id = :id", {"id": customer_id}
        )
        if rowcount == 0:
            raise RecordNotFoundError("customer", customer_id)

    async def search_customers(self, filters: SearchFilters) -> List[Customer]:
        """
        Search customers with conjunctive filters.

        Name, email and phone match case-insensitive substrings; status is
        exact; from/to bound created_at. Newest first.
        """
        where_clauses = []
        params: Dict[str, Any] = {}

        for column in ("first_name", "last_name", "email", "phone"):
            value = getattr(filters, column)
            if value:
                where_clauses.append(f"{column} ILIKE :{column}")
                params[column] = _like(value)

        if filters.status:
            where_clauses.append("status = :status")
            params["status"] = filters.status.value

        if filters.from_date:
            where_clauses.append("created_at >= :from_date")
            params["from_date"] = filters.from_date

        if filters.to_date:
            where_clauses.append("created_at <= :to_date")
            params["to_date"] = filters.to_date

        where_sql = f"WHERE {' AND '.join(where_clauses)}" if where_clauses else ""
        params["limit"] = filters.limit if filters.limit > 0 else DEFAULT_SEARCH_LIMIT
        params["offset"] = filters.offset if filters.offset > 0 else 0

        rows = await self._fetch_all("search customers", f"""
            SELECT {CUSTOMER_COLUMNS}
            FROM customers
            {where_sql}
            ORDER BY created_at DESC
            LIMIT :limit OFFSET :offset
        """, params)

        return [self._customer_from_row(row) for row in rows]

    # ==================== ADDRESSES ====================

    @staticmethod
    def _address_params(address: Address) -> Dict[str, Any]:
        return {
            "id": address.id,
            "customer_id": address.customer_id,
            "address_type": address.address_type.value,
            "street1": address.street1,
            "street2": address.street2,
            "city": address.city,
            "state": address.state,
            "postal_code": address.postal_code,
            "country": address.country,
            "is_primary": address.is_primary,
            "valid_from": address.valid_from,
            "valid_to": address.valid_to,
            "created_at": address.created_at,
            "updated_at": address.updated_at,
        }

    async def add_address(self, address: Address) -> Address:
        if address.id is None:
            address.id = uuid.uuid4()
        now = self.clock.now()
        address.created_at = now
        address.updated_at = now
        if address.valid_from is None:
            address.valid_from = now

        await self._execute("add address", """
            INSERT INTO addresses (
                id, customer_id, address_type, street1, street2,
                city, state, postal_code, country, is_primary,
                valid_from, valid_to, created_at, updated_at
            ) VALUES (
                :id, :customer_id, :address_type, :street1, :street2,
                :city, :state, :postal_code, :country, :is_primary,
                :valid_from, :valid_to, :created_at, :updated_at
            )
        """, self._address_params(address), entity_type="address")

        return address

    async def update_address(self, address: Address) -> Address:
        address.updated_at = self.clock.now()

        rowcount = await self._execute("update address", """
            UPDATE addresses SET
                address_type = :address_type,
                street1 = :street1,
                street2 = :street2,
                city = :city,
                state = :state,
                postal_code = :postal_code,
                country = :country,
                is_primary = :is_primary,
                valid_from = :valid_from,
                valid_to = :valid_to,
                updated_at = :updated_at
            WHERE id = :id
        """, self._address_params(address), entity_type="address")

        if rowcount == 0:
            raise RecordNotFoundError("address", address.id)
        return address

    async def get_customer_addresses(self, customer_id: uuid.UUID) -> List[Address]:
        """Addresses for one customer, primary first, then newest first."""
        rows = await self._fetch_all("get addresses", f"""
            SELECT {ADDRESS_COLUMNS}
            FROM addresses
            WHERE customer_id = :customer_id
            ORDER BY is_primary DESC, created_at DESC
        """, {"customer_id": customer_id})

        return [self._address_from_row(row) for row in rows]

    async def delete_address(self, address_id: uuid.UUID) -> None:
        rowcount = await self._execute(
            "delete address", "DELETE FROM addresses WHERE id = :id", {"id": address_id}
        )
        if rowcount == 0:
            raise RecordNotFoundError("address", address_id)

    # ==================== DOCUMENTS ====================

    def _document_params(self, doc: CustomerDocument) -> Dict[str, Any]:
        return {
            "id": doc.id,
            "customer_id": doc.customer_id,
            "document_type": doc.document_type.value,
            "document_number": self.cipher.encrypt(doc.document_number or ""),
            "issuing_authority": doc.issuing_authority,
            "issuing_country": doc.issuing_country,
            "issue_date": doc.issue_date,
            "expiry_date": doc.expiry_date,
            "verification_status": doc.verification_status.value,
            "verified_at": doc.verified_at,
            "verified_by": doc.verified_by,
            "created_at": doc.created_at,
            "updated_at": doc.updated_at,
        }

    async def add_document(self, doc: CustomerDocument) -> CustomerDocument:
        if doc.id is None:
            doc.id = uuid.uuid4()
        now = self.clock.now()
        doc.created_at = now
        doc.updated_at = now

        await self._execute("add document", """
            INSERT INTO customer_documents (
                id, customer_id, document_type, document_number,
                issuing_authority, issuing_country, issue_date, expiry_date,
                verification_status, verified_at, verified_by, created_at, updated_at
            ) VALUES (
                :id, :customer_id, :document_type, :document_number,
                :issuing_authority, :issuing_country, :issue_date, :expiry_date,
                :verification_status, :verified_at, :verified_by, :created_at, :updated_at
            )
        """, self._document_params(doc), entity_type="document")

        return doc

    async def update_document(self, doc: CustomerDocument) -> CustomerDocument:
        doc.updated_at = self.clock.now()

        rowcount = await self._execute("update document", """
            UPDATE customer_documents SET
                document_type = :document_type,
                document_number = :document_number,
                issuing_authority = :issuing_authority,
                issuing_country = :issuing_country,
                issue_date = :issue_date,
                expiry_date = :expiry_date,
                verification_status = :verification_status,
                verified_at = :verified_at,
                verified_by = :verified_by,
                updated_at = :updated_at
            WHERE id = :id
        """, self._document_params(doc), entity_type="document")

        if rowcount == 0:
            raise RecordNotFoundError("document", doc.id)
        return doc

    async def get_customer_documents(self, customer_id: uuid.UUID) -> List[CustomerDocument]:
        """Documents for one customer, newest first."""
        rows = await self._fetch_all("get documents", f"""
            SELECT {DOCUMENT_COLUMNS}
            FROM customer_documents
            WHERE customer_id = :customer_id
            ORDER BY created_at DESC
        """, {"customer_id": customer_id})

        return [self._document_from_row(row) for row in rows]

    async def delete_document(self, document_id: uuid.UUID) -> None:
        rowcount = await self._execute(
            "delete document", "DELETE FROM customer_documents WHERE id = :id", {"id": document_id}
        )
        if rowcount == 0:
            raise RecordNotFoundError("document", document_id)

    # ==================== STATUS HISTORY ====================

    async def add_status_change(self, change: StatusChange) -> StatusChange:
        await self._execute("add status change", """
            INSERT INTO customer_status_changes (
                id, customer_id, previous_status, new_status, reason, changed_by, changed_at
            ) VALUES (
                :id, :customer_id, :previous_status, :new_status, :reason, :changed_by, :changed_at
            )
        """, {
            "id": change.id,
            "customer_id": change.customer_id,
            "previous_status": change.previous_status.value,
            "new_status": change.new_status.value,
            "reason": change.reason,
            "changed_by": change.changed_by,
            "changed_at": change.changed_at,
        }, entity_type="status change")

        return change

    async def get_status_history(self, customer_id: uuid.UUID) -> List[StatusChange]:
        """Status changes for one customer, newest first."""
        rows = await self._fetch_all("get status history", f"""
            SELECT {STATUS_CHANGE_COLUMNS}
            FROM customer_status_changes
            WHERE customer_id = :customer_id
            ORDER BY changed_at DESC
        """, {"customer_id": customer_id})

        return [self._status_change_from_row(row) for row in rows]
