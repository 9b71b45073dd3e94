import asyncio
import threading

from fastapi.testclient import TestClient

from app import stores
from app.db import SessionLocal
from reconciliation.models import IndexKind, SortCodeInput, UpsertAction


def test_store_calls_run_off_the_event_loop_thread(client: TestClient, monkeypatch) -> None:
    threads = []
    original = stores.upsert_index_records

    def recording_upsert(db, tenant_id, kind, records):
        threads.append(threading.get_ident())
        return original(db, tenant_id, kind, records)

    monkeypatch.setattr(stores, "upsert_index_records", recording_upsert)

    async def upsert_and_read():
        loop_thread = threading.get_ident()
        with SessionLocal() as db:
            store = stores.SqlAlchemyRecordStore(db)
            outcomes = await store.upsert_many("acme", IndexKind.SORT_CODE, [SortCodeInput(code=600, name="Sales")])
            codes = await store.list_sort_codes("acme")
        return loop_thread, outcomes, codes

    loop_thread, outcomes, codes = asyncio.run(upsert_and_read())

    assert threads and threads[0] != loop_thread
    assert [o.action for o in outcomes] == [UpsertAction.ADDED]
    assert [(c.code, c.name) for c in codes] == [(600, "Sales")]


def test_failed_record_rolls_back_alone(client: TestClient) -> None:
    records = [SortCodeInput(code=600, name="Sales"), SortCodeInput(code=700, name=None), SortCodeInput(code=800, name="Rent")]

    with SessionLocal() as db:
        outcomes = stores.upsert_index_records(db, "acme", IndexKind.SORT_CODE, records)
        codes = stores.sort_codes_for(db, "acme")

    assert [o.action for o in outcomes] == [UpsertAction.ADDED, UpsertAction.ERROR, UpsertAction.ADDED]
    assert [c.code for c in codes] == [600, 800]
