"""
Reference index reconciliation (sort codes, account index).

Each call:
1. Drops records that fail the validity check (no natural key, empty name);
   each one is reported in `errors` and counted in `invalid`
2. Upserts the remaining records through the RecordStore port; a failure on
   one record is recorded and the batch carries on
3. Appends exactly one IndexSyncRecord to the audit log

Post-condition for every call: added + updated + len(errors) == len(records_in).

Calls for the same tenant are serialized with a tenant-scoped asyncio.Lock.
Reconcilers only coordinate when they share a lock registry (`locks=`), which
may be a weakref.WeakValueDictionary so idle tenants drop out; separate
processes rely on the store's unique keys.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, MutableMapping, Optional, Sequence, Union

from reconciliation.exceptions import ReconciliationError, UnknownIndexKindError
from reconciliation.models import (
    AccountIndexInput,
    IndexKind,
    IndexSyncRecord,
    ReconcileResult,
    SortCodeInput,
    SyncSource,
    SyncStatus,
    UpsertAction,
    UpsertOutcome,
)
from reconciliation.stores import IndexInput, RecordStore

logger = logging.getLogger(__name__)

KIND_ALIASES = {
    "sortCode": IndexKind.SORT_CODE,
    "sort_code": IndexKind.SORT_CODE,
    "sort_codes": IndexKind.SORT_CODE,
    "account": IndexKind.ACCOUNT,
    "accounts": IndexKind.ACCOUNT,
    "customers": IndexKind.ACCOUNT,
    "suppliers": IndexKind.ACCOUNT,
}

_LABELS = {IndexKind.SORT_CODE: "Sort code", IndexKind.ACCOUNT: "Account"}


def resolve_kind(kind: Union[IndexKind, str]) -> IndexKind:
    if isinstance(kind, IndexKind):
        return kind
    try:
        return KIND_ALIASES[kind]
    except (KeyError, TypeError):
        raise UnknownIndexKindError(kind) from None


def validation_error(record: IndexInput, kind: IndexKind, position: int) -> Optional[str]:
    """Return a human-readable reason when the record cannot be reconciled, else None."""
    label = _LABELS[kind]
    expected = SortCodeInput if kind is IndexKind.SORT_CODE else AccountIndexInput
    if not isinstance(record, expected):
        return f"{label} (row {position}): expected {expected.__name__}, got {type(record).__name__}"

    key = record.natural_key
    if key is None:
        field = "code" if kind is IndexKind.SORT_CODE else "account key"
        return f"{label} (row {position}): {field} is required"

    name = record.name if kind is IndexKind.SORT_CODE else record.account_name
    if not (name or "").strip():
        return f"{label} {key}: name is required"
    return None


def sync_status(added: int, updated: int, errors: Sequence[str]) -> SyncStatus:
    if not errors:
        return SyncStatus.SUCCESS
    if added + updated == 0:
        return SyncStatus.FAILED
    return SyncStatus.PARTIAL


class IndexReconciler:
    """
    Idempotent upsert of reference index records with an audit trail.

    Usage:
        reconciler = IndexReconciler(store)
        result = await reconciler.reconcile("tenant-1", sort_codes, IndexKind.SORT_CODE)
        result.added, result.updated, result.errors
    """

    def __init__(
        self,
        store: RecordStore,
        source: SyncSource = SyncSource.HASHAVSHEVET_EXPORT,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[MutableMapping[str, asyncio.Lock]] = None,
    ):
        self.store = store
        self.source = source
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._tenant_locks = locks if locks is not None else {}

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        lock = self._tenant_locks.get(tenant_id)
        if lock is None:
            lock = self._tenant_locks[tenant_id] = asyncio.Lock()
        return lock

    async def reconcile(
        self,
        tenant_id: str,
        records_in: Sequence[IndexInput],
        kind: Union[IndexKind, str],
        *,
        actor: Optional[str] = None,
        source: Optional[SyncSource] = None,
    ) -> ReconcileResult:
        if not tenant_id:
            raise ValueError("tenant_id is required")
        if records_in is None:
            raise ValueError("records_in is required")
        kind = resolve_kind(kind)
        records_in = list(records_in)

        async with self._lock_for(tenant_id):
            return await self._reconcile(tenant_id, records_in, kind, actor, source or self.source)

    async def _reconcile(
        self,
        tenant_id: str,
        records_in: list[IndexInput],
        kind: IndexKind,
        actor: Optional[str],
        source: SyncSource,
    ) -> ReconcileResult:
        errors: list[tuple[int, str]] = []
        valid: list[tuple[int, IndexInput]] = []
        for index, record in enumerate(records_in):
            reason = validation_error(record, kind, index + 1)
            if reason:
                errors.append((index, reason))
            else:
                valid.append((index, record))
        invalid = len(errors)

        added = updated = 0
        if valid:
            outcomes = await self._upsert(tenant_id, kind, [record for _, record in valid])
            label = _LABELS[kind]
            for position, (index, record) in enumerate(valid):
                outcome = outcomes[position] if position < len(outcomes) else None
                if outcome is None:
                    errors.append((index, f"{label} {record.natural_key}: no result returned by store"))
                elif outcome.action is UpsertAction.ADDED:
                    added += 1
                elif outcome.action is UpsertAction.UPDATED:
                    updated += 1
                else:
                    errors.append((index, f"{label} {record.natural_key}: {outcome.error or 'write failed'}"))

        messages = tuple(message for _, message in sorted(errors, key=lambda item: item[0]))
        if added + updated + len(messages) != len(records_in):
            raise ReconciliationError(
                f"Reconcile accounting mismatch: {added} added + {updated} updated + "
                f"{len(messages)} errors != {len(records_in)} records"
            )

        status = sync_status(added, updated, messages)
        sync_record = IndexSyncRecord(
            tenant_id=tenant_id,
            index_type=kind,
            source=source,
            total=len(records_in),
            added=added,
            updated=updated,
            status=status,
            error_message="; ".join(messages) or None,
            actor=actor,
            timestamp=self.clock(),
        )
        await self.store.append_sync_record(sync_record)

        logger.info(
            "Index sync %s for tenant %s: %s (%d added, %d updated, %d errors, %d invalid)",
            kind.value,
            tenant_id,
            status.value,
            added,
            updated,
            len(messages),
            invalid,
        )
        return ReconcileResult(
            added=added,
            updated=updated,
            errors=messages,
            invalid=invalid,
            sync_record=sync_record,
        )

    async def _upsert(self, tenant_id: str, kind: IndexKind, records: list[IndexInput]):
        try:
            return await self.store.upsert_many(tenant_id, kind, records)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Batch upsert of %d %s records failed for tenant %s", len(records), kind.value, tenant_id)
            return [UpsertOutcome(record.natural_key, UpsertAction.ERROR, str(exc)) for record in records]


async def reconcile(
    store: RecordStore,
    tenant_id: str,
    records_in: Sequence[IndexInput],
    kind: Union[IndexKind, str],
    **kwargs,
) -> ReconcileResult:
    return await IndexReconciler(store).reconcile(tenant_id, records_in, kind, **kwargs)
