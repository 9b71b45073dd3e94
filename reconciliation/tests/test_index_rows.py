import asyncio
from datetime import date
from decimal import Decimal

import pytest

from reconciliation.csv_parser import parse_date, read_csv
from reconciliation.index_rows import parse_account_rows, parse_index_rows, parse_sort_code_rows
from reconciliation.models import AccountType, IndexKind, ReportType
from reconciliation.services.column_mapper import ColumnMapper, apply_mapping
from reconciliation.services.index_reconciler import reconcile
from reconciliation.stores import InMemoryRecordStore

SORT_CODES_CSV = """﻿קוד מיון,שם קוד מיון,קוד אב
600,הכנסות,
610,הכנסות משירותים,600

,,
810,שכר דירה,800
"""

CUSTOMERS_CSV = """מפתח,שם,קוד מיון,ח.פ,טלפון,יתרה
30001,לקוח א,150,514000001,03-5555555,"12,500.75"
30002,לקוח ב,150,,,
,ללא מפתח,150,,,
"""


class TestReadCsv:
    def test_header_rows_and_blank_lines(self):
        parsed = read_csv(SORT_CODES_CSV)

        assert parsed.header == ["קוד מיון", "שם קוד מיון", "קוד אב"]
        assert parsed.row_count == 3
        assert parsed.rows[1] == {"קוד מיון": "610", "שם קוד מיון": "הכנסות משירותים", "קוד אב": "600"}
        assert parsed.errors == []

    def test_bytes_input(self):
        parsed = read_csv(SORT_CODES_CSV.encode("utf-8"))

        assert parsed.header[0] == "קוד מיון"

    def test_extra_cells_are_reported(self):
        parsed = read_csv("a,b\n1,2\n3,4,5\n")

        assert parsed.rows == [{"a": "1", "b": "2"}, {"a": "3", "b": "4"}]
        assert len(parsed.errors) == 1
        assert parsed.errors[0].row == 2

    def test_short_rows_read_as_empty(self):
        parsed = read_csv("a,b,c\n1\n")

        assert parsed.rows == [{"a": "1", "b": "", "c": ""}]

    def test_empty_input(self):
        parsed = read_csv("")

        assert parsed.header == []
        assert parsed.rows == []


class TestParseDate:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("05/03/2024", date(2024, 3, 5)),
            ("5/3/2024", date(2024, 3, 5)),
            ("2024-03-05", date(2024, 3, 5)),
            (date(2024, 3, 5), date(2024, 3, 5)),
            ("03-05-2024", None),
            ("", None),
            (None, None),
        ],
    )
    def test_formats(self, value, expected):
        assert parse_date(value) == expected


class TestSortCodeRows:
    def test_export_headers(self):
        inputs = parse_sort_code_rows(read_csv(SORT_CODES_CSV).rows)

        assert [i.code for i in inputs] == [600, 610, 810]
        assert inputs[1].name == "הכנסות משירותים"
        assert inputs[1].parent_code == 600
        assert inputs[0].parent_code is None
        assert inputs[0].report_type is ReportType.INCOME
        assert inputs[2].report_type is ReportType.OPERATING
        assert inputs[0].sort_order is None

    def test_canonical_headers(self):
        inputs = parse_sort_code_rows([{"code": "950", "name": "Finance", "sort_order": "3"}])

        assert inputs[0].code == 950
        assert inputs[0].report_type is ReportType.FINANCIAL
        assert inputs[0].sort_order == 3

    def test_rows_without_code_are_kept(self):
        inputs = parse_sort_code_rows([{"name": "No code"}])

        assert inputs[0].code is None
        assert inputs[0].report_type is None


class TestAccountRows:
    def test_customers_upload_forces_type(self):
        inputs = parse_account_rows(read_csv(CUSTOMERS_CSV).rows, "customers")

        first = inputs[0]
        assert first.account_key == 30001
        assert first.account_name == "לקוח א"
        assert first.sort_code == 150
        assert first.account_type is AccountType.CUSTOMER
        assert first.id_number == "514000001"
        assert first.phone == "03-5555555"
        assert first.current_balance == Decimal("12500.75")
        assert inputs[1].id_number is None
        assert inputs[1].current_balance is None
        assert inputs[2].account_key is None

    @pytest.mark.parametrize(
        "sort_code,expected",
        [
            ("150", AccountType.CUSTOMER),
            ("210", AccountType.SUPPLIER),
            ("610", AccountType.INCOME),
            ("810", AccountType.EXPENSE),
            ("450", AccountType.OTHER),
            ("", AccountType.OTHER),
        ],
    )
    def test_general_upload_detects_type(self, sort_code, expected):
        inputs = parse_account_rows([{"מפתח": "1", "שם": "x", "קוד מיון": sort_code}])

        assert inputs[0].account_type is expected

    def test_explicit_type_column(self):
        inputs = parse_account_rows([{"account_key": "7", "account_name": "Petty cash", "account_type": "Cash", "sort_code": "150"}])

        assert inputs[0].account_type is AccountType.CASH

    def test_unknown_upload_type(self):
        with pytest.raises(ValueError):
            parse_index_rows([], "vendors")


class TestUploadFlow:
    def test_csv_to_store(self):
        parsed = read_csv(CUSTOMERS_CSV)
        mapper = ColumnMapper("customers")
        mapping = mapper.suggest(parsed.header)
        mapper.ensure_complete(mapping)
        inputs = parse_index_rows(apply_mapping(parsed.rows, mapping), "customers")
        store = InMemoryRecordStore()

        result = asyncio.run(reconcile(store, "tenant-1", inputs, IndexKind.ACCOUNT))

        assert result.added == 2
        assert result.invalid == 1
        assert result.errors == ("Account (row 3): account key is required",)
        assert store.accounts[("tenant-1", 30001)].current_balance == Decimal("12500.75")
        assert store.accounts[("tenant-1", 30002)].current_balance == 0
        assert store.accounts[("tenant-1", 30001)].id_number == "514000001"

    def test_short_sort_code_headers(self):
        parsed = read_csv("קוד,שם\n600,הכנסות\n")
        mapper = ColumnMapper("sort_codes")
        mapping = mapper.suggest(parsed.header)
        mapper.ensure_complete(mapping)

        inputs = parse_index_rows(apply_mapping(parsed.rows, mapping), "sort_codes")

        assert [(i.code, i.name) for i in inputs] == [(600, "הכנסות")]
        assert inputs[0].report_type is ReportType.INCOME
