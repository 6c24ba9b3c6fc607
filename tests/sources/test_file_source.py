"""Tests for docpredict.sources.file: delimited and XLSX row sources."""

import pytest
from openpyxl import Workbook

from docpredict.core.errors import ParseError, SourceError, SourceNotFoundError
from docpredict.core.protocols import RowSource
from docpredict.sources import FileFormat, FileRowSource


@pytest.fixture
def csv_file(tmp_path):
    path = tmp_path / "rows.csv"
    path.write_text(
        "MCO_NO,NEC_DESCRIPTION, WHT_PER \n"
        "M1,Dividend,15%\n"
        ",,\n"
        "M2,Interest,0\n"
        "M3,Royalty,No Reporting\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def xlsx_file(tmp_path):
    path = tmp_path / "rows.xlsx"
    wb = Workbook()
    ws = wb.active
    ws.title = "Summary"
    ws.append(["ignored"])
    data = wb.create_sheet("Data")
    data.append(["report title"])
    data.append(["MCO_NO", "NEC_DESCRIPTION", "WHT_PER", None])
    data.append(["M1", "Dividend", 0.15, None])
    data.append([None, None, None, None])
    data.append(["M2", "Interest", 30, "stray"])
    wb.save(path)
    wb.close()
    return path


class TestDetection:
    @pytest.mark.parametrize(
        "name, fmt",
        [("a.csv", FileFormat.CSV), ("a.PSV", FileFormat.PSV), ("a.txt", FileFormat.TSV), ("a.xlsm", FileFormat.XLSX)],
    )
    def test_extension(self, name, fmt):
        assert FileRowSource(name).format is fmt

    def test_unknown_extension(self):
        with pytest.raises(SourceError):
            FileRowSource("a.json")

    def test_explicit_format(self):
        assert FileRowSource("a.dat", format="psv").format is FileFormat.PSV

    def test_is_a_row_source(self, csv_file):
        source = FileRowSource(csv_file)
        assert isinstance(source, RowSource)
        assert source.name == "rows.csv"


class TestDelimited:
    def test_reads_records(self, csv_file):
        records = FileRowSource(csv_file).read_all()

        assert len(records) == 3
        assert records[0] == {"MCO_NO": "M1", "NEC_DESCRIPTION": "Dividend", "WHT_PER": "15%"}
        assert records[2]["WHT_PER"] == "No Reporting"

    def test_batches(self, csv_file):
        batches = list(FileRowSource(csv_file).stream(batch_size=2))
        assert [len(b) for b in batches] == [2, 1]

    def test_pipe_separated_with_start_row(self, tmp_path):
        path = tmp_path / "rows.psv"
        path.write_text("exported 2024-01-01\nA|B\n1|2\n", encoding="utf-8")

        assert FileRowSource(path, start_row=2).read_all() == [{"A": "1", "B": "2"}]

    def test_extra_values_are_dropped(self, tmp_path):
        path = tmp_path / "rows.csv"
        path.write_text("A,B\n1,2,3\n", encoding="utf-8")
        assert FileRowSource(path).read_all() == [{"A": "1", "B": "2"}]

    def test_bom_is_stripped(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_bytes("\ufeffA,B\n1,2\n".encode("utf-8"))
        assert FileRowSource(path).read_all() == [{"A": "1", "B": "2"}]

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceNotFoundError):
            FileRowSource(tmp_path / "nope.csv").read_all()

    def test_invalid_batch_size(self, csv_file):
        with pytest.raises(ValueError):
            list(FileRowSource(csv_file).stream(batch_size=0))

    def test_malformed_csv(self, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("A,B\n" + "x" * 200_000 + ",2\n", encoding="utf-8")
        with pytest.raises(ParseError):
            FileRowSource(path).read_all()


class TestXlsx:
    def test_named_worksheet_and_start_row(self, xlsx_file):
        records = FileRowSource(xlsx_file, worksheet_name="Data", start_row=2).read_all()

        assert records == [
            {"MCO_NO": "M1", "NEC_DESCRIPTION": "Dividend", "WHT_PER": 0.15},
            {"MCO_NO": "M2", "NEC_DESCRIPTION": "Interest", "WHT_PER": 30},
        ]

    def test_active_sheet_by_default(self, xlsx_file):
        assert FileRowSource(xlsx_file).read_all() == []

    def test_missing_worksheet(self, xlsx_file):
        with pytest.raises(SourceError, match="Worksheet not found"):
            FileRowSource(xlsx_file, worksheet_name="Nope").read_all()

    def test_not_a_workbook(self, tmp_path):
        path = tmp_path / "fake.xlsx"
        path.write_text("not a zip")
        with pytest.raises(ParseError):
            FileRowSource(path).read_all()
