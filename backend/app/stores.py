"""
SQLAlchemy implementation of the reconciliation RecordStore port.

Every record in an upsert batch is written inside its own SAVEPOINT, so a
constraint violation on one record rolls back only that record. The outer
transaction is committed once the batch is done.

The module-level functions are synchronous and serve the plain `def`
endpoints; SqlAlchemyRecordStore wraps them for the async reconciler.
"""
from __future__ import annotations

import logging
from typing import Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from reconciliation.classification import DEFAULT_CASH_FLOW_CLASSIFICATION, ClassificationTable, normalize_table
from reconciliation.models import (
    AccountIndexRecord,
    AccountType,
    IndexKind,
    IndexSyncRecord,
    ReportType,
    SortCode,
    SyncSource,
    SyncStatus,
    UpsertAction,
    UpsertOutcome,
)
from reconciliation.stores import IndexInput, account_values, sort_code_values

from .models import AccountIndexRow, CashFlowClassificationRow, IndexSyncHistory, SortCodeRow

logger = logging.getLogger(__name__)


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


def _sort_code_from_row(row: SortCodeRow) -> SortCode:
    return SortCode(
        tenant_id=row.tenant_id,
        code=row.code,
        name=row.name,
        parent_code=row.parent_code,
        report_type=ReportType(row.report_type) if row.report_type else None,
        sort_order=row.sort_order,
        is_active=row.is_active,
    )


def _account_from_row(row: AccountIndexRow) -> AccountIndexRecord:
    return AccountIndexRecord(
        tenant_id=row.tenant_id,
        account_key=row.account_key,
        account_name=row.account_name,
        sort_code=row.sort_code,
        account_type=AccountType(row.account_type) if row.account_type else None,
        id_number=row.id_number,
        address=row.address,
        city=row.city,
        phone=row.phone,
        email=row.email,
        current_balance=row.current_balance,
        balance_date=row.balance_date,
        is_active=row.is_active,
    )


def _sync_from_row(row: IndexSyncHistory) -> IndexSyncRecord:
    return IndexSyncRecord(
        tenant_id=row.tenant_id,
        index_type=IndexKind(row.index_type),
        source=SyncSource(row.source),
        total=row.total_records,
        added=row.added_records,
        updated=row.updated_records,
        deleted=row.deleted_records,
        status=SyncStatus(row.status),
        error_message=row.error_message,
        actor=row.synced_by,
        timestamp=row.synced_at,
    )


def upsert_index_records(
    db: Session, tenant_id: str, kind: IndexKind, records: Sequence[IndexInput]
) -> list[UpsertOutcome]:
    outcomes = []
    for record in records:
        try:
            with db.begin_nested():
                action = _upsert_one(db, tenant_id, kind, record)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Upsert failed for %s %s: %s", kind.value, record.natural_key, exc)
            outcomes.append(UpsertOutcome(record.natural_key, UpsertAction.ERROR, str(exc)))
        else:
            outcomes.append(UpsertOutcome(record.natural_key, action))
    db.commit()
    return outcomes


def _upsert_one(db: Session, tenant_id: str, kind: IndexKind, record: IndexInput) -> UpsertAction:
    if kind is IndexKind.SORT_CODE:
        model, key_column, key_name = SortCodeRow, SortCodeRow.code, "code"
    else:
        model, key_column, key_name = AccountIndexRow, AccountIndexRow.account_key, "account_key"

    existing = db.scalar(select(model).where(model.tenant_id == tenant_id, key_column == record.natural_key))
    builder = sort_code_values if kind is IndexKind.SORT_CODE else account_values
    values = {name: _enum_value(value) for name, value in builder(record, existing is not None).items()}

    if existing is not None:
        for name, value in values.items():
            setattr(existing, name, value)
        db.flush()
        return UpsertAction.UPDATED

    db.add(model(tenant_id=tenant_id, **{key_name: record.natural_key}, **values))
    db.flush()
    return UpsertAction.ADDED


def add_sync_record(db: Session, record: IndexSyncRecord) -> None:
    db.add(
        IndexSyncHistory(
            tenant_id=record.tenant_id,
            index_type=record.index_type.value,
            source=_enum_value(record.source),
            total_records=record.total,
            added_records=record.added,
            updated_records=record.updated,
            deleted_records=record.deleted,
            status=record.status.value,
            error_message=record.error_message,
            synced_by=record.actor,
            synced_at=record.timestamp,
        )
    )
    db.commit()


def last_sync_record(db: Session, tenant_id: str, kind: IndexKind) -> Optional[IndexSyncRecord]:
    row = db.scalar(
        select(IndexSyncHistory)
        .where(IndexSyncHistory.tenant_id == tenant_id, IndexSyncHistory.index_type == kind.value)
        .order_by(IndexSyncHistory.synced_at.desc(), IndexSyncHistory.id.desc())
        .limit(1)
    )
    return _sync_from_row(row) if row else None


def sort_codes_for(db: Session, tenant_id: str, active_only: bool = True) -> list[SortCode]:
    query = select(SortCodeRow).where(SortCodeRow.tenant_id == tenant_id)
    if active_only:
        query = query.where(SortCodeRow.is_active.is_(True))
    rows = db.scalars(query.order_by(SortCodeRow.sort_order, SortCodeRow.code))
    return [_sort_code_from_row(row) for row in rows]


def accounts_for(
    db: Session,
    tenant_id: str,
    account_type: Optional[str] = None,
    sort_code: Optional[int] = None,
    search: Optional[str] = None,
) -> list[AccountIndexRecord]:
    query = select(AccountIndexRow).where(
        AccountIndexRow.tenant_id == tenant_id,
        AccountIndexRow.is_active.is_(True),
    )
    if account_type:
        query = query.where(AccountIndexRow.account_type == account_type)
    if sort_code is not None:
        query = query.where(AccountIndexRow.sort_code == sort_code)
    if search:
        pattern = f"%{search}%"
        query = query.where(
            or_(AccountIndexRow.account_name.ilike(pattern), AccountIndexRow.id_number.ilike(pattern))
        )
    rows = db.scalars(query.order_by(AccountIndexRow.account_name))
    return [_account_from_row(row) for row in rows]


class SqlAlchemyRecordStore:
    """
    RecordStore over a synchronous Session.

    Each call runs in Starlette's threadpool. Calls on one store are awaited
    one at a time; the Session is never used from two threads at once.
    """

    def __init__(self, db: Session):
        self.db = db

    async def upsert_many(
        self, tenant_id: str, kind: IndexKind, records: Sequence[IndexInput]
    ) -> list[UpsertOutcome]:
        return await run_in_threadpool(upsert_index_records, self.db, tenant_id, kind, records)

    async def append_sync_record(self, record: IndexSyncRecord) -> None:
        await run_in_threadpool(add_sync_record, self.db, record)

    async def last_sync(self, tenant_id: str, kind: IndexKind) -> Optional[IndexSyncRecord]:
        return await run_in_threadpool(last_sync_record, self.db, tenant_id, kind)

    async def list_sort_codes(self, tenant_id: str, active_only: bool = True) -> list[SortCode]:
        return await run_in_threadpool(sort_codes_for, self.db, tenant_id, active_only)

    async def list_accounts(
        self,
        tenant_id: str,
        account_type: Optional[str] = None,
        sort_code: Optional[int] = None,
        search: Optional[str] = None,
    ) -> list[AccountIndexRecord]:
        return await run_in_threadpool(accounts_for, self.db, tenant_id, account_type, sort_code, search)


def load_classification(db: Session, tenant_id: str) -> dict[str, tuple[str, ...]]:
    """Tenant prefix table, or the shipped default when the tenant has none."""
    row = db.scalar(select(CashFlowClassificationRow).where(CashFlowClassificationRow.tenant_id == tenant_id))
    if row is None:
        return dict(DEFAULT_CASH_FLOW_CLASSIFICATION)
    return normalize_table(row.prefixes)


def save_classification(db: Session, tenant_id: str, table: ClassificationTable) -> dict[str, tuple[str, ...]]:
    normalized = normalize_table(table)
    row = db.scalar(select(CashFlowClassificationRow).where(CashFlowClassificationRow.tenant_id == tenant_id))
    payload = {bucket: list(prefixes) for bucket, prefixes in normalized.items()}
    if row is None:
        db.add(CashFlowClassificationRow(tenant_id=tenant_id, prefixes=payload))
    else:
        row.prefixes = payload
    db.commit()
    return normalized
