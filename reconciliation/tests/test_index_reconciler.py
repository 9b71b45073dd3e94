"""
Tests for IndexReconciler

Each test drives the async reconciler with asyncio.run against the
in-memory store.
"""

import asyncio
import gc
import weakref
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from reconciliation.exceptions import UnknownIndexKindError
from reconciliation.models import (
    AccountIndexInput,
    AccountType,
    IndexKind,
    ReportType,
    SortCodeInput,
    SyncSource,
    SyncStatus,
)
from reconciliation.services.index_reconciler import IndexReconciler, reconcile
from reconciliation.services.pl_structure import build_pl_structure, load_pl_structure
from reconciliation.stores import InMemoryRecordStore

TENANT = "tenant-1"


class StepClock:
    def __init__(self):
        self.current = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.current += timedelta(minutes=1)
        return self.current


class FlakyStore(InMemoryRecordStore):
    """Fails writes for the listed natural keys."""

    def __init__(self, failing_keys):
        super().__init__()
        self.failing_keys = set(failing_keys)

    def _upsert_one(self, tenant_id, kind, record):
        if record.natural_key in self.failing_keys:
            raise RuntimeError("connection reset")
        return super()._upsert_one(tenant_id, kind, record)


class BrokenStore(InMemoryRecordStore):
    async def upsert_many(self, tenant_id, kind, records):
        raise RuntimeError("database unavailable")


class ShortStore(InMemoryRecordStore):
    """Drops the last outcome of every batch."""

    async def upsert_many(self, tenant_id, kind, records):
        outcomes = await super().upsert_many(tenant_id, kind, records)
        return outcomes[:-1]


class SlowStore(InMemoryRecordStore):
    """Yields to the event loop mid-write and records how many writes overlap."""

    def __init__(self):
        super().__init__()
        self.active = 0
        self.peak = 0

    async def upsert_many(self, tenant_id, kind, records):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0)
            return await super().upsert_many(tenant_id, kind, records)
        finally:
            self.active -= 1


def run(coro):
    return asyncio.run(coro)


def sort_codes(*pairs):
    return [SortCodeInput(code=code, name=name) for code, name in pairs]


class TestIndexReconciler:
    def test_insert_update_and_invalid(self):
        store = InMemoryRecordStore()
        reconciler = IndexReconciler(store, clock=StepClock())
        run(reconciler.reconcile(TENANT, sort_codes((600, "Sales")), IndexKind.SORT_CODE))

        result = run(
            reconciler.reconcile(
                TENANT,
                sort_codes((600, "Revenue"), (700, "Cost of sales"), (800, "")),
                IndexKind.SORT_CODE,
            )
        )

        assert result.added == 1
        assert result.updated == 1
        assert result.invalid == 1
        assert result.errors == ("Sort code 800: name is required",)
        assert result.sync_record.status is SyncStatus.PARTIAL
        assert len(store.sync_log) == 2
        assert store.sync_log[-1] == result.sync_record
        assert store.sort_codes[(TENANT, 600)].name == "Revenue"
        assert (TENANT, 800) not in store.sort_codes

    def test_rerun_is_idempotent(self):
        store = InMemoryRecordStore()
        records = sort_codes((600, "Sales"), (700, "Cost of sales"), (810, "Rent"))

        first = run(reconcile(store, TENANT, records, IndexKind.SORT_CODE))
        second = run(reconcile(store, TENANT, records, IndexKind.SORT_CODE))

        assert (first.added, first.updated) == (3, 0)
        assert (second.added, second.updated) == (0, 3)
        assert len(store.sort_codes) == 3

    @pytest.mark.parametrize(
        "records,expected_status",
        [
            ([], SyncStatus.SUCCESS),
            ([SortCodeInput(code=600, name="Sales"), SortCodeInput(code=610, name="Services")], SyncStatus.SUCCESS),
            ([SortCodeInput(code=None, name="Orphan"), SortCodeInput(code=610, name="  ")], SyncStatus.FAILED),
            ([SortCodeInput(code=600, name="Sales"), SortCodeInput(code=None, name="Orphan")], SyncStatus.PARTIAL),
        ],
    )
    def test_every_record_is_accounted_for(self, records, expected_status):
        store = InMemoryRecordStore()

        result = run(IndexReconciler(store).reconcile(TENANT, records, IndexKind.SORT_CODE))

        assert result.added + result.updated + len(result.errors) == len(records)
        assert result.sync_record.total == len(records)
        assert result.sync_record.status is expected_status
        assert len(store.sync_log) == 1

    def test_per_record_failure_does_not_abort_batch(self):
        store = FlakyStore(failing_keys={2})
        accounts = [
            AccountIndexInput(account_key=1, account_name="Alpha"),
            AccountIndexInput(account_key=2, account_name="Beta"),
            AccountIndexInput(account_key=3, account_name="Gamma"),
        ]

        result = run(IndexReconciler(store).reconcile(TENANT, accounts, "accounts"))

        assert result.added == 2
        assert result.errors == ("Account 2: connection reset",)
        assert result.sync_record.status is SyncStatus.PARTIAL
        assert result.sync_record.error_message == "Account 2: connection reset"
        assert sorted(key for _, key in store.accounts) == [1, 3]

    def test_batch_failure_marks_every_record(self):
        store = BrokenStore()

        result = run(IndexReconciler(store).reconcile(TENANT, sort_codes((600, "A"), (700, "B")), IndexKind.SORT_CODE))

        assert result.added == result.updated == 0
        assert result.errors == (
            "Sort code 600: database unavailable",
            "Sort code 700: database unavailable",
        )
        assert result.sync_record.status is SyncStatus.FAILED
        assert result.sync_record.error_message == "; ".join(result.errors)
        assert len(store.sync_log) == 1

    def test_missing_outcome_is_an_error(self):
        store = ShortStore()

        result = run(IndexReconciler(store).reconcile(TENANT, sort_codes((600, "A"), (700, "B")), IndexKind.SORT_CODE))

        assert result.added == 1
        assert result.errors == ("Sort code 700: no result returned by store",)

    def test_errors_keep_input_order(self):
        store = FlakyStore(failing_keys={600})
        records = [SortCodeInput(code=600, name="A"), SortCodeInput(code=None, name="B")]

        result = run(IndexReconciler(store).reconcile(TENANT, records, IndexKind.SORT_CODE))

        assert result.errors == ("Sort code 600: connection reset", "Sort code (row 2): code is required")

    def test_duplicate_keys_last_write_wins(self):
        store = InMemoryRecordStore()

        result = run(reconcile(store, TENANT, sort_codes((600, "First"), (600, "Second")), IndexKind.SORT_CODE))

        assert (result.added, result.updated) == (1, 1)
        assert store.sort_codes[(TENANT, 600)].name == "Second"

    def test_wrong_record_type_is_invalid(self):
        store = InMemoryRecordStore()

        result = run(reconcile(store, TENANT, [SortCodeInput(code=1, name="x")], IndexKind.ACCOUNT))

        assert result.invalid == 1
        assert "expected AccountIndexInput" in result.errors[0]

    def test_unknown_kind(self):
        with pytest.raises(UnknownIndexKindError):
            run(reconcile(InMemoryRecordStore(), TENANT, [], "vendors"))

    def test_missing_tenant(self):
        with pytest.raises(ValueError):
            run(reconcile(InMemoryRecordStore(), "", [], IndexKind.SORT_CODE))

    def test_tenants_are_isolated(self):
        store = InMemoryRecordStore()
        records = sort_codes((600, "Sales"))

        run(reconcile(store, "a", records, IndexKind.SORT_CODE))
        result = run(reconcile(store, "b", records, IndexKind.SORT_CODE))

        assert result.added == 1
        assert len(store.sort_codes) == 2

    def test_concurrent_calls_for_one_tenant(self):
        store = InMemoryRecordStore()
        reconciler = IndexReconciler(store)
        records = sort_codes((600, "Sales"), (700, "Cost of sales"))

        async def both():
            return await asyncio.gather(
                reconciler.reconcile(TENANT, records, IndexKind.SORT_CODE),
                reconciler.reconcile(TENANT, records, IndexKind.SORT_CODE),
            )

        first, second = run(both())

        assert first.added + second.added == 2
        assert first.updated + second.updated == 2
        assert len(store.sort_codes) == 2
        assert len(store.sync_log) == 2

    def test_shared_weak_lock_registry(self):
        store = SlowStore()
        locks = weakref.WeakValueDictionary()
        records = sort_codes((600, "Sales"))

        async def two_requests():
            return await asyncio.gather(
                IndexReconciler(store, locks=locks).reconcile(TENANT, records, IndexKind.SORT_CODE),
                IndexReconciler(store, locks=locks).reconcile(TENANT, records, IndexKind.SORT_CODE),
            )

        first, second = run(two_requests())
        gc.collect()

        assert store.peak == 1
        assert (first.added, second.updated) == (1, 1)
        assert TENANT not in locks

    def test_sync_record_metadata(self):
        store = InMemoryRecordStore()
        reconciler = IndexReconciler(store, source=SyncSource.MANUAL, clock=StepClock())

        result = run(reconciler.reconcile(TENANT, sort_codes((600, "Sales")), "sort_codes", actor="user-7"))

        record = result.sync_record
        assert record.index_type is IndexKind.SORT_CODE
        assert record.source is SyncSource.MANUAL
        assert record.actor == "user-7"
        assert record.deleted == 0
        assert record.error_message is None

    def test_last_sync_returns_latest(self):
        store = InMemoryRecordStore()
        reconciler = IndexReconciler(store, clock=StepClock())
        run(reconciler.reconcile(TENANT, sort_codes((600, "Sales")), IndexKind.SORT_CODE))
        latest = run(reconciler.reconcile(TENANT, sort_codes((600, "Sales"), (700, "")), IndexKind.SORT_CODE))

        assert run(store.last_sync(TENANT, IndexKind.SORT_CODE)) == latest.sync_record
        assert run(store.last_sync(TENANT, IndexKind.ACCOUNT)) is None


class TestStoreValues:
    def test_sort_order_defaults_to_code(self):
        store = InMemoryRecordStore()

        run(reconcile(store, TENANT, [SortCodeInput(code=610, name="Services")], IndexKind.SORT_CODE))
        run(reconcile(store, TENANT, [SortCodeInput(code=610, name="Services", sort_order=5)], IndexKind.SORT_CODE))
        run(reconcile(store, TENANT, [SortCodeInput(code=610, name="Services")], IndexKind.SORT_CODE))

        assert store.sort_codes[(TENANT, 610)].sort_order == 5

    def test_balance_kept_when_update_has_none(self):
        store = InMemoryRecordStore()

        run(reconcile(store, TENANT, [AccountIndexInput(1, "Alpha", current_balance=Decimal("100"))], IndexKind.ACCOUNT))
        run(reconcile(store, TENANT, [AccountIndexInput(1, "Alpha Ltd")], IndexKind.ACCOUNT))

        account = store.accounts[(TENANT, 1)]
        assert account.account_name == "Alpha Ltd"
        assert account.current_balance == Decimal("100")

    def test_list_accounts_filters(self):
        store = InMemoryRecordStore()
        run(
            reconcile(
                store,
                TENANT,
                [
                    AccountIndexInput(1, "Beta Customer", sort_code=150, account_type=AccountType.CUSTOMER, id_number="514"),
                    AccountIndexInput(2, "Alpha Supplier", sort_code=210, account_type=AccountType.SUPPLIER),
                ],
                IndexKind.ACCOUNT,
            )
        )

        assert [a.account_key for a in run(store.list_accounts(TENANT))] == [2, 1]
        assert [a.account_key for a in run(store.list_accounts(TENANT, account_type="customer"))] == [1]
        assert [a.account_key for a in run(store.list_accounts(TENANT, sort_code=210))] == [2]
        assert [a.account_key for a in run(store.list_accounts(TENANT, search="514"))] == [1]


class TestPLStructure:
    def test_tree_by_report_type(self):
        store = InMemoryRecordStore()
        run(
            reconcile(
                store,
                TENANT,
                [
                    SortCodeInput(600, "Income", report_type=ReportType.INCOME, sort_order=2),
                    SortCodeInput(610, "Services", parent_code=600, report_type=ReportType.INCOME),
                    SortCodeInput(605, "Products", parent_code=600, report_type=ReportType.INCOME),
                    SortCodeInput(650, "Other income", report_type=ReportType.INCOME, sort_order=1),
                    SortCodeInput(800, "Operating", report_type=ReportType.OPERATING),
                ],
                IndexKind.SORT_CODE,
            )
        )
        run(
            reconcile(
                store,
                TENANT,
                [AccountIndexInput(1, "A", sort_code=610), AccountIndexInput(2, "B", sort_code=610)],
                IndexKind.ACCOUNT,
            )
        )

        structure = run(load_pl_structure(store, TENANT))

        assert [item.code for item in structure["income"]] == [650, 600]
        income = structure["income"][1]
        assert [child.code for child in income.children] == [605, 610]
        assert income.children[1].accounts_count == 2
        assert [item.code for item in structure["operating"]] == [800]
        assert structure["cogs"] == []
        assert structure["financial"] == []

    def test_inactive_codes_are_skipped(self):
        store = InMemoryRecordStore()
        run(reconcile(store, TENANT, [SortCodeInput(600, "Income", report_type=ReportType.INCOME)], IndexKind.SORT_CODE))
        store.sort_codes[(TENANT, 600)].is_active = False

        structure = build_pl_structure(store.sort_codes.values())

        assert structure["income"] == []
