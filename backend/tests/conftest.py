"""
Shared fixtures for the customer record tests.

InMemoryCustomerRepository mirrors CustomerRepository's contract (version
check, not-found errors, transactions that roll back on error) so service
scenarios run without a database.
"""

import copy
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, date, timezone

import pytest

from customers.exceptions import RecordNotFoundError, OptimisticLockError, NestedTransactionError
from utils.clock import FixedClock
from utils.encryption import FieldCipher

TEST_KEY = "0123456789abcdef0123456789abcdef"
NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


class InMemoryCustomerRepository:
    """Dictionary-backed stand-in for CustomerRepository."""

    def __init__(self, clock):
        self.clock = clock
        self.customers = {}
        self.addresses = {}
        self.documents = {}
        self.status_changes = []
        self.in_transaction = False
        self.transactions_opened = 0

    @asynccontextmanager
    async def transaction(self):
        if self.in_transaction:
            raise NestedTransactionError()
        snapshot = copy.deepcopy((self.customers, self.addresses, self.documents, self.status_changes))
        self.in_transaction = True
        self.transactions_opened += 1
        try:
            yield self
        except BaseException:
            self.customers, self.addresses, self.documents, self.status_changes = snapshot
            raise
        finally:
            self.in_transaction = False

    # customers

    async def create_customer(self, customer):
        if customer.id is None:
            customer.id = uuid.uuid4()
        customer.created_at = customer.updated_at = self.clock.now()
        customer.version = 1
        self.customers[customer.id] = copy.deepcopy(customer)
        return customer

    async def get_customer_by_id(self, customer_id):
        if customer_id not in self.customers:
            raise RecordNotFoundError("customer", customer_id)
        return copy.deepcopy(self.customers[customer_id])

    async def get_customer_by_number(self, customer_number):
        for customer in self.customers.values():
            if customer.customer_number == customer_number:
                return copy.deepcopy(customer)
        raise RecordNotFoundError("customer", customer_number)

    async def update_customer(self, customer):
        stored = self.customers.get(customer.id)
        if stored is None or stored.version != customer.version:
            raise OptimisticLockError("customer", customer.id, customer.version)
        customer.version += 1
        customer.updated_at = self.clock.now()
        self.customers[customer.id] = copy.deepcopy(customer)
        return customer

    async def delete_customer(self, customer_id):
        if self.customers.pop(customer_id, None) is None:
            raise RecordNotFoundError("customer", customer_id)

    async def search_customers(self, filters):
        self.last_filters = filters
        results = []
        for customer in self.customers.values():
            if filters.first_name and filters.first_name.lower() not in customer.first_name.lower():
                continue
            if filters.last_name and filters.last_name.lower() not in customer.last_name.lower():
                continue
            if filters.status and customer.status != filters.status:
                continue
            if filters.from_date and customer.created_at < filters.from_date:
                continue
            if filters.to_date and customer.created_at > filters.to_date:
                continue
            results.append(copy.deepcopy(customer))
        limit = filters.limit or 50
        return results[filters.offset:filters.offset + limit]

    # addresses

    async def add_address(self, address):
        if address.id is None:
            address.id = uuid.uuid4()
        address.created_at = address.updated_at = self.clock.now()
        if address.valid_from is None:
            address.valid_from = address.created_at
        self.addresses[address.id] = copy.deepcopy(address)
        return address

    async def update_address(self, address):
        if address.id not in self.addresses:
            raise RecordNotFoundError("address", address.id)
        address.updated_at = self.clock.now()
        self.addresses[address.id] = copy.deepcopy(address)
        return address

    async def get_customer_addresses(self, customer_id):
        found = [copy.deepcopy(a) for a in self.addresses.values() if a.customer_id == customer_id]
        # primary first, then newest first
        found.sort(key=lambda a: a.created_at, reverse=True)
        return sorted(found, key=lambda a: not a.is_primary)

    # documents

    async def add_document(self, doc):
        if doc.id is None:
            doc.id = uuid.uuid4()
        doc.created_at = doc.updated_at = self.clock.now()
        self.documents[doc.id] = copy.deepcopy(doc)
        return doc

    async def get_customer_documents(self, customer_id):
        return [copy.deepcopy(d) for d in self.documents.values() if d.customer_id == customer_id]

    # status history

    async def add_status_change(self, change):
        self.status_changes.append(change)
        return change

    async def get_status_history(self, customer_id):
        found = [c for c in self.status_changes if c.customer_id == customer_id]
        return sorted(found, key=lambda c: c.changed_at, reverse=True)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def cipher():
    return FieldCipher(TEST_KEY)


@pytest.fixture
def memory_repo(clock):
    return InMemoryCustomerRepository(clock)


@pytest.fixture
def adult_dob():
    return date(1990, 12, 10)
