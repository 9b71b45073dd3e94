"""
Persistence port for reference indexes.

RecordStore is what IndexReconciler talks to. upsert_many takes a whole batch
so an implementation can batch its round trips, but it must still return one
UpsertOutcome per input record, in input order, so per-record failures stay
visible to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence, Union

from reconciliation.config import ZERO
from reconciliation.models import (
    AccountIndexInput,
    AccountIndexRecord,
    IndexKind,
    IndexSyncRecord,
    SortCode,
    SortCodeInput,
    UpsertAction,
    UpsertOutcome,
)

logger = logging.getLogger(__name__)

IndexInput = Union[SortCodeInput, AccountIndexInput]


class RecordStore(Protocol):
    async def upsert_many(
        self, tenant_id: str, kind: IndexKind, records: Sequence[IndexInput]
    ) -> list[UpsertOutcome]: ...

    async def append_sync_record(self, record: IndexSyncRecord) -> None: ...

    async def last_sync(self, tenant_id: str, kind: IndexKind) -> Optional[IndexSyncRecord]: ...

    async def list_sort_codes(self, tenant_id: str, active_only: bool = True) -> list[SortCode]: ...

    async def list_accounts(
        self,
        tenant_id: str,
        account_type: Optional[str] = None,
        sort_code: Optional[int] = None,
        search: Optional[str] = None,
    ) -> list[AccountIndexRecord]: ...


def sort_code_values(record: SortCodeInput, existing: bool) -> dict[str, Any]:
    values: dict[str, Any] = {
        "name": record.name.strip(),
        "parent_code": record.parent_code,
        "report_type": record.report_type,
        "sort_order": record.sort_order,
        "is_active": True,
    }
    if record.sort_order is None:
        if existing:
            values.pop("sort_order")
        else:
            values["sort_order"] = record.code
    return values


def account_values(record: AccountIndexInput, existing: bool) -> dict[str, Any]:
    values: dict[str, Any] = {
        "account_name": record.account_name.strip(),
        "sort_code": record.sort_code,
        "account_type": record.account_type,
        "id_number": record.id_number,
        "address": record.address,
        "city": record.city,
        "phone": record.phone,
        "email": record.email,
        "current_balance": record.current_balance,
        "balance_date": record.balance_date,
        "is_active": True,
    }
    if record.current_balance is None:
        if existing:
            values.pop("current_balance")
        else:
            values["current_balance"] = ZERO
    return values


class InMemoryRecordStore:
    """Dict-backed RecordStore; writes are applied one record at a time in input order."""

    def __init__(self):
        self.sort_codes: dict[tuple[str, int], SortCode] = {}
        self.accounts: dict[tuple[str, int], AccountIndexRecord] = {}
        self.sync_log: list[IndexSyncRecord] = []

    async def upsert_many(
        self, tenant_id: str, kind: IndexKind, records: Sequence[IndexInput]
    ) -> list[UpsertOutcome]:
        outcomes = []
        for record in records:
            try:
                action = self._upsert_one(tenant_id, kind, record)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Upsert failed for %s %s: %s", kind.value, record.natural_key, exc)
                outcomes.append(UpsertOutcome(record.natural_key, UpsertAction.ERROR, str(exc)))
            else:
                outcomes.append(UpsertOutcome(record.natural_key, action))
        return outcomes

    def _upsert_one(self, tenant_id: str, kind: IndexKind, record: IndexInput) -> UpsertAction:
        key = (tenant_id, record.natural_key)
        if kind is IndexKind.SORT_CODE:
            current = self.sort_codes.get(key)
            if current is not None:
                for name, value in sort_code_values(record, existing=True).items():
                    setattr(current, name, value)
                return UpsertAction.UPDATED
            self.sort_codes[key] = SortCode(
                tenant_id=tenant_id, code=record.code, **sort_code_values(record, existing=False)
            )
            return UpsertAction.ADDED

        current = self.accounts.get(key)
        if current is not None:
            for name, value in account_values(record, existing=True).items():
                setattr(current, name, value)
            return UpsertAction.UPDATED
        self.accounts[key] = AccountIndexRecord(
            tenant_id=tenant_id,
            account_key=record.account_key,
            **account_values(record, existing=False),
        )
        return UpsertAction.ADDED

    async def append_sync_record(self, record: IndexSyncRecord) -> None:
        self.sync_log.append(record)

    async def last_sync(self, tenant_id: str, kind: IndexKind) -> Optional[IndexSyncRecord]:
        matching = [r for r in self.sync_log if r.tenant_id == tenant_id and r.index_type is kind]
        return max(matching, key=lambda r: r.timestamp) if matching else None

    async def list_sort_codes(self, tenant_id: str, active_only: bool = True) -> list[SortCode]:
        codes = [
            code
            for (tenant, _), code in self.sort_codes.items()
            if tenant == tenant_id and (code.is_active or not active_only)
        ]
        return sorted(codes, key=lambda c: (c.sort_order, c.code))

    async def list_accounts(
        self,
        tenant_id: str,
        account_type: Optional[str] = None,
        sort_code: Optional[int] = None,
        search: Optional[str] = None,
    ) -> list[AccountIndexRecord]:
        needle = (search or "").casefold()
        accounts = []
        for (tenant, _), account in self.accounts.items():
            if tenant != tenant_id or not account.is_active:
                continue
            if account_type and (account.account_type.value if account.account_type else None) != account_type:
                continue
            if sort_code is not None and account.sort_code != sort_code:
                continue
            if needle and needle not in account.account_name.casefold() and needle not in (account.id_number or "").casefold():
                continue
            accounts.append(account)
        return sorted(accounts, key=lambda a: a.account_name)
