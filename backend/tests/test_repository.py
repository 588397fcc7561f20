"""
Unit Tests for CustomerRepository and the statement executors

Tests against a mocked StatementExecutor:
- Encryption on write / decryption on read
- Optimistic locking (stale versions rejected, in-memory state restored)
- Error translation (unique violations, driver failures, timeouts)
- Search SQL construction
- Transaction scoping

Run with: pytest tests/test_repository.py -v
"""

import asyncio
import uuid
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from customers.exceptions import (
    RecordNotFoundError,
    OptimisticLockError,
    DuplicateRecordError,
    PersistenceError,
    NestedTransactionError,
)
from customers.models import (
    Customer,
    Address,
    CustomerStatus,
    AddressType,
    DocumentType,
    VerificationStatus,
    CustomerDocument,
    SearchFilters,
)
from customers.repository import CustomerRepository
from database.executor import ConnectionExecutor, EngineExecutor

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


def make_customer(**overrides):
    values = dict(
        customer_number="CUST-0123456789ABCDEF",
        first_name="Ada",
        last_name="Lovelace",
        date_of_birth=date(1990, 12, 10),
        email="ada@example.com",
        phone="+14155550100",
        tax_id="123-45-6789",
    )
    values.update(overrides)
    return Customer(**values)


def customer_row(cipher, **overrides):
    values = dict(
        id=uuid.uuid4(),
        customer_number="CUST-0123456789ABCDEF",
        first_name="Ada",
        middle_name=None,
        last_name="Lovelace",
        date_of_birth=date(1990, 12, 10),
        tax_id=cipher.encrypt("123-45-6789"),
        email="ada@example.com",
        phone="+14155550100",
        status="Active",
        created_at=NOW,
        updated_at=NOW,
        created_by="system",
        updated_by=None,
        version=2,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def mock_engine(connection):
    """Engine whose begin() yields `connection` as an async context manager."""
    begin_cm = MagicMock()
    begin_cm.__aenter__ = AsyncMock(return_value=connection)
    begin_cm.__aexit__ = AsyncMock(return_value=False)
    engine = MagicMock()
    engine.begin.return_value = begin_cm
    return engine


class TestCustomerRepository:
    """Test CustomerRepository against a mocked executor."""

    @pytest.fixture
    def executor(self):
        executor = MagicMock()
        executor.in_transaction = False
        executor.fetch_one = AsyncMock(return_value=None)
        executor.fetch_all = AsyncMock(return_value=[])
        executor.execute = AsyncMock(return_value=1)
        return executor

    @pytest.fixture
    def repo(self, executor, cipher, clock):
        return CustomerRepository(executor, cipher, clock)

    # ==================== CREATE ====================

    @pytest.mark.asyncio
    async def test_create_assigns_id_version_and_timestamps(self, repo, executor):
        customer = await repo.create_customer(make_customer())

        assert customer.id is not None
        assert customer.version == 1
        assert customer.created_at == NOW
        assert customer.updated_at == NOW
        executor.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_encrypts_tax_id(self, repo, executor, cipher):
        await repo.create_customer(make_customer())

        sql, params = executor.execute.call_args[0]
        assert "INSERT INTO customers" in sql
        assert params["tax_id"] != "123-45-6789"
        assert cipher.decrypt(params["tax_id"]) == "123-45-6789"
        assert params["status"] == "Pending"

    @pytest.mark.asyncio
    async def test_create_duplicate_customer_number(self, repo, executor):
        executor.execute.side_effect = IntegrityError(
            "INSERT INTO customers", {}, Exception("duplicate key value violates unique constraint")
        )

        with pytest.raises(DuplicateRecordError):
            await repo.create_customer(make_customer())

    @pytest.mark.asyncio
    async def test_driver_failure_becomes_persistence_error(self, repo, executor):
        executor.execute.side_effect = OperationalError("INSERT", {}, Exception("connection refused"))

        with pytest.raises(PersistenceError) as exc_info:
            await repo.create_customer(make_customer())
        assert exc_info.value.code == "DATABASE_ERROR"

    # ==================== READ ====================

    @pytest.mark.asyncio
    async def test_get_by_id_maps_and_decrypts(self, repo, executor, cipher):
        row = customer_row(cipher)
        executor.fetch_one.return_value = row

        customer = await repo.get_customer_by_id(row.id)

        assert customer.id == row.id
        assert customer.tax_id == "123-45-6789"
        assert customer.status is CustomerStatus.ACTIVE
        assert customer.version == 2

    @pytest.mark.asyncio
    async def test_get_by_id_not_found(self, repo):
        with pytest.raises(RecordNotFoundError) as exc_info:
            await repo.get_customer_by_id(uuid.uuid4())
        assert exc_info.value.entity_type == "customer"

    @pytest.mark.asyncio
    async def test_get_by_number_not_found(self, repo):
        with pytest.raises(RecordNotFoundError):
            await repo.get_customer_by_number("CUST-MISSING")

    @pytest.mark.asyncio
    async def test_unknown_status_in_row(self, repo, executor, cipher):
        executor.fetch_one.return_value = customer_row(cipher, status="Archived")

        with pytest.raises(PersistenceError):
            await repo.get_customer_by_id(uuid.uuid4())

    # ==================== UPDATE ====================

    @pytest.mark.asyncio
    async def test_update_increments_version(self, repo, executor):
        customer = make_customer(id=uuid.uuid4(), version=1)

        updated = await repo.update_customer(customer)

        assert updated.version == 2
        assert updated.updated_at == NOW
        sql, params = executor.execute.call_args[0]
        assert "WHERE id = :id AND version = :expected_version" in sql
        assert params["expected_version"] == 1
        assert params["version"] == 2

    @pytest.mark.asyncio
    async def test_stale_version_is_rejected_and_restored(self, repo, executor):
        executor.execute.return_value = 0
        earlier = datetime(2025, 1, 1, tzinfo=timezone.utc)
        customer = make_customer(id=uuid.uuid4(), version=1, updated_at=earlier)

        with pytest.raises(OptimisticLockError) as exc_info:
            await repo.update_customer(customer)

        assert exc_info.value.expected_version == 1
        assert customer.version == 1
        assert customer.updated_at == earlier

    @pytest.mark.asyncio
    async def test_failed_update_restores_version(self, repo, executor):
        executor.execute.side_effect = OperationalError("UPDATE", {}, Exception("gone"))
        customer = make_customer(id=uuid.uuid4(), version=4)

        with pytest.raises(PersistenceError):
            await repo.update_customer(customer)
        assert customer.version == 4

    @pytest.mark.asyncio
    async def test_delete_missing_customer(self, repo, executor):
        executor.execute.return_value = 0
        with pytest.raises(RecordNotFoundError):
            await repo.delete_customer(uuid.uuid4())

    # ==================== SEARCH ====================

    @pytest.mark.asyncio
    async def test_search_builds_conjunctive_filters(self, repo, executor, cipher):
        executor.fetch_all.return_value = [customer_row(cipher)]

        results = await repo.search_customers(SearchFilters(
            first_name="Ada", status=CustomerStatus.ACTIVE,
            from_date=datetime(2025, 1, 1, tzinfo=timezone.utc),
        ))

        sql, params = executor.fetch_all.call_args[0]
        assert "first_name ILIKE :first_name" in sql
        assert "status = :status" in sql
        assert "created_at >= :from_date" in sql
        assert " AND " in sql
        assert "ORDER BY created_at DESC" in sql
        assert params["first_name"] == "%Ada%"
        assert params["status"] == "Active"
        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_search_default_limit(self, repo, executor):
        await repo.search_customers(SearchFilters())

        sql, params = executor.fetch_all.call_args[0]
        assert "WHERE" not in sql
        assert params["limit"] == 50
        assert params["offset"] == 0

    @pytest.mark.asyncio
    async def test_search_escapes_wildcards(self, repo, executor):
        await repo.search_customers(SearchFilters(last_name="50%_off"))

        _, params = executor.fetch_all.call_args[0]
        assert params["last_name"] == "%50\\%\\_off%"

    # ==================== ADDRESSES / DOCUMENTS ====================

    @pytest.mark.asyncio
    async def test_add_address_defaults_valid_from(self, repo, executor):
        address = await repo.add_address(Address(
            customer_id=uuid.uuid4(), street1="1 Main St", city="Springfield",
            state="IL", postal_code="62701", country="US",
        ))

        assert address.id is not None
        assert address.valid_from == NOW
        _, params = executor.execute.call_args[0]
        assert params["address_type"] == "Physical"

    @pytest.mark.asyncio
    async def test_update_missing_address(self, repo, executor):
        executor.execute.return_value = 0
        address = Address(
            id=uuid.uuid4(), customer_id=uuid.uuid4(), street1="1 Main St", city="Springfield",
            state="IL", postal_code="62701", country="US", address_type=AddressType.MAILING,
        )
        with pytest.raises(RecordNotFoundError):
            await repo.update_address(address)

    @pytest.mark.asyncio
    async def test_document_number_encrypted_and_decrypted(self, repo, executor, cipher):
        customer_id = uuid.uuid4()
        await repo.add_document(CustomerDocument(
            customer_id=customer_id, document_type=DocumentType.PASSPORT,
            document_number="P1234567", issuing_authority="HMPO", issuing_country="GB",
            issue_date=date(2020, 1, 1), expiry_date=date(2030, 1, 1),
        ))
        _, params = executor.execute.call_args[0]
        assert params["document_number"] != "P1234567"

        executor.fetch_all.return_value = [SimpleNamespace(
            id=uuid.uuid4(), customer_id=customer_id, document_type="Passport",
            document_number=params["document_number"], issuing_authority="HMPO",
            issuing_country="GB", issue_date=date(2020, 1, 1), expiry_date=date(2030, 1, 1),
            verification_status="Verified", verified_at=NOW, verified_by="kyc-team",
            created_at=NOW, updated_at=NOW,
        )]
        documents = await repo.get_customer_documents(customer_id)

        assert documents[0].document_number == "P1234567"
        assert documents[0].verification_status is VerificationStatus.VERIFIED
        assert documents[0].is_verified_identity

    @pytest.mark.asyncio
    async def test_update_document_reencrypts_number(self, repo, executor, cipher, clock):
        doc = CustomerDocument(
            id=uuid.uuid4(), customer_id=uuid.uuid4(), document_type=DocumentType.PASSPORT,
            document_number="P7654321", issuing_authority="HMPO", issuing_country="GB",
            issue_date=date(2020, 1, 1), expiry_date=date(2030, 1, 1),
            verification_status=VerificationStatus.VERIFIED, verified_by="kyc-team",
        )

        await repo.update_document(doc)

        sql, params = executor.execute.call_args[0]
        assert "UPDATE customer_documents" in sql
        assert cipher.decrypt(params["document_number"]) == "P7654321"
        assert params["verification_status"] == "Verified"
        assert doc.updated_at == clock.now()

    @pytest.mark.asyncio
    async def test_update_missing_document(self, repo, executor):
        executor.execute.return_value = 0
        doc = CustomerDocument(
            id=uuid.uuid4(), customer_id=uuid.uuid4(), document_type=DocumentType.NATIONAL_ID,
            document_number="X1", issuing_authority="Gov", issuing_country="FR",
            issue_date=date(2020, 1, 1), expiry_date=date(2030, 1, 1),
        )

        with pytest.raises(RecordNotFoundError) as exc_info:
            await repo.update_document(doc)
        assert exc_info.value.entity_type == "document"

    @pytest.mark.asyncio
    async def test_delete_missing_address_and_document(self, repo, executor):
        executor.execute.return_value = 0

        with pytest.raises(RecordNotFoundError):
            await repo.delete_address(uuid.uuid4())
        with pytest.raises(RecordNotFoundError):
            await repo.delete_document(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_status_history_rows(self, repo, executor):
        customer_id = uuid.uuid4()
        executor.fetch_all.return_value = [SimpleNamespace(
            id=uuid.uuid4(), customer_id=customer_id, previous_status="Pending",
            new_status="Active", reason="KYC complete", changed_by="ops", changed_at=NOW,
        )]

        history = await repo.get_status_history(customer_id)

        assert history[0].previous_status is CustomerStatus.PENDING
        assert history[0].new_status is CustomerStatus.ACTIVE
        sql, _ = executor.fetch_all.call_args[0]
        assert "ORDER BY changed_at DESC" in sql


class TestTransactions:
    """Test repository transaction scoping."""

    @pytest.mark.asyncio
    async def test_transaction_binds_to_one_connection(self, cipher, clock):
        connection = AsyncMock()
        engine = mock_engine(connection)
        repo = CustomerRepository(EngineExecutor(engine), cipher, clock)

        async with repo.transaction() as tx:
            assert tx.in_transaction
            assert isinstance(tx.executor, ConnectionExecutor)
            assert tx.executor.connection is connection

        engine.begin.assert_called_once()

    @pytest.mark.asyncio
    async def test_nested_transaction_is_rejected(self, cipher, clock):
        repo = CustomerRepository(EngineExecutor(mock_engine(AsyncMock())), cipher, clock)

        async with repo.transaction() as tx:
            with pytest.raises(NestedTransactionError):
                async with tx.transaction():
                    pass

    @pytest.mark.asyncio
    async def test_error_in_block_reaches_context_exit(self, cipher, clock):
        engine = mock_engine(AsyncMock())
        repo = CustomerRepository(EngineExecutor(engine), cipher, clock)

        with pytest.raises(ValueError):
            async with repo.transaction():
                raise ValueError("boom")

        exit_args = engine.begin.return_value.__aexit__.call_args[0]
        assert exit_args[0] is ValueError


class TestExecutors:
    """Test the statement executors."""

    @pytest.mark.asyncio
    async def test_connection_executor_returns_rowcount(self):
        result = MagicMock()
        result.rowcount = 3
        connection = AsyncMock()
        connection.execute.return_value = result

        count = await ConnectionExecutor(connection).execute("DELETE FROM addresses WHERE id = :id", {"id": 1})

        assert count == 3
        statement, params = connection.execute.call_args[0]
        assert statement.text == "DELETE FROM addresses WHERE id = :id"
        assert params == {"id": 1}

    @pytest.mark.asyncio
    async def test_connection_executor_fetches(self):
        result = MagicMock()
        result.fetchone.return_value = "row"
        result.fetchall.return_value = ("a", "b")
        connection = AsyncMock()
        connection.execute.return_value = result
        executor = ConnectionExecutor(connection)

        assert await executor.fetch_one("SELECT 1") == "row"
        assert await executor.fetch_all("SELECT 1") == ["a", "b"]

    @pytest.mark.asyncio
    async def test_engine_executor_timeout_becomes_persistence_error(self, cipher, clock):
        async def slow_execute(*args, **kwargs):
            await asyncio.sleep(1)

        connection = AsyncMock()
        connection.execute.side_effect = slow_execute
        executor = EngineExecutor(mock_engine(connection), statement_timeout=0.01)
        repo = CustomerRepository(executor, cipher, clock)

        with pytest.raises(PersistenceError):
            await repo.get_customer_by_id(uuid.uuid4())
