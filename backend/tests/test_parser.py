"""
Tests for core/parser.py — spreadsheet reading, column aliases, import records, IC de-duplication.
"""

import os
import sys
import pytest
import pandas as pd

# Ensure backend/ is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.errors import StudentImportError
from core.parser import (
    build_import_records,
    deduplicate_by_ic,
    parse_upload,
    suggest_column_mapping,
)

CLASSES = [{"id": 1, "name": "5 Amanah"}, {"id": 2, "name": "5 Bestari"}]

CSV_TEXT = (
    "NAMA,JANTINA,NO IC,NO AHLI,KELAS,SIMPANAN\n"
    "Ali,L,010203-04-0506,A01,5 Amanah,120.50\n"
    "Siti,P,020304-05-0607,A02,5 bestari,75\n"
    ",,,,,\n"
    "Ah Kow,,030405-06-0708,A03,6 Cemerlang,\"RM 1,000.00\"\n"
)


@pytest.fixture
def csv_bytes():
    return CSV_TEXT.encode("utf-8")


@pytest.fixture
def xlsx_path(tmp_path):
    path = tmp_path / "students.xlsx"
    pd.DataFrame({
        "Nama Pelajar": ["Ali", "Siti"],
        "Jantina": ["Lelaki", "Perempuan"],
        "IC": ["010203040506", "020304050607"],
        "Modal Syer": ["10", "20"],
    }).to_excel(path, index=False)
    return path


class TestParseUpload:
    """Tests for the parse_upload function."""

    def test_csv_bytes_returns_dataframe(self, csv_bytes):
        df = parse_upload(csv_bytes, filename="ahli.csv")
        assert isinstance(df, pd.DataFrame)
        assert list(df.columns) == ["NAMA", "JANTINA", "NO IC", "NO AHLI", "KELAS", "SIMPANAN"]

    def test_cells_are_text(self, csv_bytes):
        df = parse_upload(csv_bytes, filename="ahli.csv")
        assert df.loc[0, "SIMPANAN"] == "120.50"

    def test_xlsx_from_path(self, xlsx_path):
        df = parse_upload(str(xlsx_path))
        assert len(df) == 2
        assert "Nama Pelajar" in df.columns

    def test_unsupported_extension(self):
        with pytest.raises(StudentImportError):
            parse_upload(b"hello", filename="notes.txt")

    def test_corrupt_workbook(self):
        with pytest.raises(StudentImportError):
            parse_upload(b"not really a workbook", filename="broken.xlsx")


class TestSuggestColumnMapping:
    def test_malay_headers(self, csv_bytes):
        mapping = suggest_column_mapping(parse_upload(csv_bytes, filename="a.csv"))
        assert mapping["name"] == ["NAMA"]
        assert mapping["gender"] == ["JANTINA"]
        assert mapping["ic_number"] == ["NO IC"]
        assert mapping["member_number"] == ["NO AHLI"]
        assert mapping["class_id"] == ["KELAS"]
        assert mapping["savings"] == ["SIMPANAN"]

    def test_missing_fields_are_empty(self):
        mapping = suggest_column_mapping(pd.DataFrame({"Name": ["A"]}))
        assert mapping["name"] == ["Name"]
        assert mapping["savings"] == []


class TestBuildImportRecords:
    @pytest.fixture
    def result(self, csv_bytes):
        return build_import_records(parse_upload(csv_bytes, filename="a.csv"), CLASSES)

    def test_blank_rows_skipped(self, result):
        records, report = result
        assert len(records) == 3
        assert report["original_rows"] == 4

    def test_fields_normalized(self, result):
        records, _ = result
        ali = records[0]
        assert ali["name"] == "Ali"
        assert ali["gender"] == "LELAKI"
        assert ali["ic_number"] == "010203040506"
        assert ali["member_number"] == "A01"
        assert ali["savings"] == 120.5

    def test_class_resolved_by_name_case_insensitive(self, result):
        records, _ = result
        assert records[0]["class_id"] == 1
        assert records[1]["class_id"] == 2

    def test_unknown_class_left_empty_with_warning(self, result):
        records, report = result
        assert records[2]["class_id"] is None
        assert report["unresolved_classes"] == 1
        assert any("6 Cemerlang" in w for w in report["warnings"])

    def test_empty_gender_defaults_to_male_and_is_counted(self, result):
        records, report = result
        assert records[1]["gender"] == "PEREMPUAN"
        assert records[2]["gender"] == "LELAKI"
        assert report["defaulted_gender"] == 1

    def test_currency_text_savings(self, result):
        records, _ = result
        assert records[2]["savings"] == 1000.0

    def test_missing_name_becomes_unknown(self):
        df = pd.DataFrame({"IC": ["111"], "Nama": [None]})
        records, _ = build_import_records(df)
        assert records[0]["name"] == "Unknown"

    def test_class_resolved_by_id(self):
        df = pd.DataFrame({"nama": ["A"], "kelas": ["2"]})
        records, _ = build_import_records(df, CLASSES)
        assert records[0]["class_id"] == 2

    def test_no_recognised_columns(self):
        with pytest.raises(StudentImportError):
            build_import_records(pd.DataFrame({"foo": ["1"], "bar": ["2"]}))

    def test_duplicates_by_ic_last_wins(self):
        df = pd.DataFrame({
            "nama": ["First", "Other", "Second"],
            "ic": ["010203-04-0506", "999", "010203040506"],
        })
        records, report = build_import_records(df)
        assert [r["name"] for r in records] == ["Other", "Second"]
        assert report["duplicates_removed"] == 1


class TestDeduplicateByIc:
    def test_records_without_ic_are_kept(self):
        records = [{"ic_number": None, "name": "A"}, {"ic_number": None, "name": "B"}]
        kept, removed = deduplicate_by_ic(records)
        assert len(kept) == 2
        assert removed == 0

    def test_idempotent(self):
        records = [{"ic_number": "1", "name": "A"}, {"ic_number": "1", "name": "B"}]
        once, _ = deduplicate_by_ic(records)
        twice, removed = deduplicate_by_ic(once)
        assert twice == once
        assert removed == 0
