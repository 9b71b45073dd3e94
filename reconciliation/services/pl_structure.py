from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

from reconciliation.models import AccountIndexRecord, ReportType, SortCode
from reconciliation.stores import RecordStore

PL_SECTIONS = (ReportType.INCOME, ReportType.COGS, ReportType.OPERATING, ReportType.FINANCIAL)


@dataclass
class PLStructureItem:
    code: int
    name: str
    report_type: ReportType
    sort_order: int
    parent_code: Optional[int] = None
    accounts_count: int = 0
    children: list["PLStructureItem"] = field(default_factory=list)


def _item(sort_code: SortCode, counts: Counter) -> PLStructureItem:
    return PLStructureItem(
        code=sort_code.code,
        name=sort_code.name,
        report_type=sort_code.report_type,
        sort_order=sort_code.sort_order,
        parent_code=sort_code.parent_code,
        accounts_count=counts.get(sort_code.code, 0),
    )


def build_pl_structure(
    sort_codes: Iterable[SortCode],
    accounts: Iterable[AccountIndexRecord] = (),
) -> dict[str, list[PLStructureItem]]:
    """
    Group active sort codes into P&L sections.

    Top-level items are codes without a parent; children are the codes whose
    parent_code points at them. Both levels are ordered by sort_order, then code.
    """
    codes = [sc for sc in sort_codes if sc.is_active]
    counts = Counter(a.sort_code for a in accounts if a.is_active and a.sort_code is not None)
    order = lambda item: (item.sort_order, item.code)  # noqa: E731

    structure: dict[str, list[PLStructureItem]] = {}
    for section in PL_SECTIONS:
        roots = []
        for sort_code in codes:
            if sort_code.report_type is not section or sort_code.parent_code:
                continue
            item = _item(sort_code, counts)
            item.children = sorted(
                (_item(child, counts) for child in codes if child.parent_code == sort_code.code),
                key=order,
            )
            roots.append(item)
        structure[section.value] = sorted(roots, key=order)
    return structure


async def load_pl_structure(store: RecordStore, tenant_id: str) -> dict[str, list[PLStructureItem]]:
    sort_codes = await store.list_sort_codes(tenant_id)
    accounts = await store.list_accounts(tenant_id)
    return build_pl_structure(sort_codes, accounts)
