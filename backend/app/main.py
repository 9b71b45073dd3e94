from __future__ import annotations

import asyncio
import dataclasses
import logging
import weakref
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from reconciliation.classification import CashFlowBucket
from reconciliation.csv_parser import ParseError, read_csv
from reconciliation.exceptions import MissingRequiredColumnsError, UnknownIndexKindError
from reconciliation.index_rows import parse_index_rows
from reconciliation.models import ColumnMapping, IndexKind, SyncSource
from reconciliation.services.cashflow import (
    CashFlowDeriver,
    build_flow_links,
    build_waterfall,
    cash_flow_alerts,
)
from reconciliation.services.column_mapper import ColumnMapper, apply_mapping
from reconciliation.services.comparison_engine import ComparisonEngine
from reconciliation.services.discrepancy_classifier import DiscrepancyClassifier
from reconciliation.services.index_reconciler import IndexReconciler, resolve_kind
from reconciliation.services.kpis import calculate_kpis
from reconciliation.services.pl_structure import build_pl_structure

from .config import settings
from .db import Base, engine, get_db
from .schemas import (
    CashFlowRequest,
    ClassificationIn,
    ClassificationOut,
    ColumnMappingIn,
    ComparisonRequest,
    IndexUploadRequest,
    LastSyncResponse,
    MappingSuggestRequest,
    MappingSuggestResponse,
    ParseErrorOut,
    ReconcileResponse,
    SyncRecordOut,
)
from .stores import (
    SqlAlchemyRecordStore,
    accounts_for,
    last_sync_record,
    load_classification,
    save_classification,
    sort_codes_for,
)

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Reconciliation API", version="0.1.0")

if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

INDEX_UPLOAD_TYPES = {"sort_codes", "accounts", "customers", "suppliers"}

# One lock per tenant, shared by every request handled by this process;
# entries go away once no reconcile holds or waits on them.
_index_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value):
        return dataclasses.asdict(value)
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def _index_kind(index_type: str) -> IndexKind:
    try:
        return resolve_kind(index_type)
    except UnknownIndexKindError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown index type: {index_type}")


@app.on_event("startup")
def startup() -> None:
    if settings.create_schema:
        Base.metadata.create_all(bind=engine)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/tenants/{tenant_id}/comparison")
def run_comparison(tenant_id: str, payload: ComparisonRequest) -> dict[str, Any]:
    ledger = [entry.to_domain() for entry in payload.ledger]
    result = ComparisonEngine.compare(
        ledger,
        [row.to_domain() for row in payload.trial_balance],
        payload.active_months,
    )
    classifier = DiscrepancyClassifier(max_warning_alerts=settings.max_warning_alerts)
    report = classifier.classify(
        result.records,
        payload.active_months,
        excluded_entries=result.excluded_entries,
    )
    kpis = calculate_kpis(
        [balance.to_domain() for balance in payload.balances],
        ledger,
        payload.active_months,
        report,
    )
    logger.info(
        "Comparison for tenant %s: %d accounts, %d discrepancies, %d excluded entries",
        tenant_id,
        report.summary.total_accounts,
        report.summary.discrepancy_accounts,
        result.excluded_entries,
    )
    return {
        "records": _plain(result.records),
        "diagnostics": _plain(result.diagnostics),
        "summary": _plain(report.summary),
        "alerts": _plain(report.alerts),
        "by_code": _plain(report.by_code),
        "by_month": _plain(report.by_month),
        "kpis": _plain(kpis),
    }


@app.post("/tenants/{tenant_id}/cash-flow")
def run_cash_flow(tenant_id: str, payload: CashFlowRequest, db: Session = Depends(get_db)) -> dict[str, Any]:
    deriver = CashFlowDeriver(load_classification(db, tenant_id))
    balances = [balance.to_domain() for balance in payload.balances]
    statement = deriver.derive(balances, payload.month)
    trend = deriver.monthly_summaries(balances, payload.active_months or [payload.month], payload.year)
    return {
        "statement": {**_plain(statement), "is_reconciled": statement.is_reconciled},
        "waterfall": _plain(build_waterfall(statement)),
        "trend": _plain(trend),
        "flows": _plain(build_flow_links(statement)),
        "alerts": _plain(cash_flow_alerts(statement)),
    }


@app.put("/tenants/{tenant_id}/cash-flow/classification", response_model=ClassificationOut)
def put_classification(tenant_id: str, payload: ClassificationIn, db: Session = Depends(get_db)) -> ClassificationOut:
    known = {bucket.value for bucket in CashFlowBucket}
    unknown = sorted(set(payload.buckets) - known)
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown cash flow buckets: {', '.join(unknown)}",
        )
    table = save_classification(db, tenant_id, payload.buckets)
    return ClassificationOut(tenant_id=tenant_id, buckets={k: list(v) for k, v in table.items()})


@app.post("/column-mapping/suggest", response_model=MappingSuggestResponse)
def suggest_column_mapping(payload: MappingSuggestRequest) -> MappingSuggestResponse:
    try:
        mapper = ColumnMapper(payload.upload_type)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    mapping = mapper.suggest(payload.columns)
    return MappingSuggestResponse(
        upload_type=payload.upload_type,
        mapping=[ColumnMappingIn(**dataclasses.asdict(m)) for m in mapping],
        missing_required=mapper.missing_required(mapping),
        duplicate_targets=mapper.duplicates(mapping),
    )


@app.post("/tenants/{tenant_id}/indexes/{index_type}", response_model=ReconcileResponse)
async def upload_index(
    tenant_id: str,
    index_type: str,
    payload: IndexUploadRequest,
    db: Session = Depends(get_db),
) -> ReconcileResponse:
    if index_type not in INDEX_UPLOAD_TYPES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown index type: {index_type}")

    parse_errors: list[ParseError] = []
    source = SyncSource(settings.index_sync_source)
    if payload.csv_content is not None:
        parsed = read_csv(payload.csv_content)
        header, rows, parse_errors = parsed.header, parsed.rows, parsed.errors
    elif payload.rows is not None:
        rows = payload.rows
        source = SyncSource.API
        header = list(dict.fromkeys(column for row in rows for column in row))
    else:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Provide csv_content or rows",
        )

    mapper = ColumnMapper(index_type)
    if payload.mapping is not None:
        mapping = [ColumnMapping(m.source_column_name, m.target_field_name) for m in payload.mapping]
    else:
        mapping = mapper.suggest(header)
    try:
        mapper.ensure_complete(mapping)
    except MissingRequiredColumnsError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "missing": exc.missing},
        )

    records = parse_index_rows(apply_mapping(rows, mapping), index_type)
    reconciler = IndexReconciler(SqlAlchemyRecordStore(db), source=source, locks=_index_locks)
    result = await reconciler.reconcile(tenant_id, records, _index_kind(index_type), actor=payload.actor)

    return ReconcileResponse(
        index_type=index_type,
        status=result.sync_record.status.value,
        total=result.total,
        added=result.added,
        updated=result.updated,
        invalid=result.invalid,
        errors=list(result.errors),
        parse_errors=[ParseErrorOut(**dataclasses.asdict(error)) for error in parse_errors],
    )


@app.get("/tenants/{tenant_id}/indexes/{index_type}/last-sync", response_model=LastSyncResponse)
def get_last_sync(tenant_id: str, index_type: str, db: Session = Depends(get_db)) -> LastSyncResponse:
    record = last_sync_record(db, tenant_id, _index_kind(index_type))
    if record is None:
        return LastSyncResponse(last_sync=None)
    return LastSyncResponse(
        last_sync=SyncRecordOut(
            index_type=record.index_type.value,
            source=record.source.value,
            status=record.status.value,
            total=record.total,
            added=record.added,
            updated=record.updated,
            deleted=record.deleted,
            error_message=record.error_message,
            actor=record.actor,
            timestamp=record.timestamp,
        )
    )


@app.get("/tenants/{tenant_id}/sort-codes/structure")
def get_sort_code_structure(tenant_id: str, db: Session = Depends(get_db)) -> dict[str, Any]:
    structure = build_pl_structure(sort_codes_for(db, tenant_id), accounts_for(db, tenant_id))
    return {section: _plain(items) for section, items in structure.items()}
