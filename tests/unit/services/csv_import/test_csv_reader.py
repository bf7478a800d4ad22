import io
import json

import pytest

from app.core.exceptions import ParseError
from app.services.csv_import.reader import read_csv_source, read_json_source


def test_read_csv_keeps_every_cell_as_text():
    data = b"Title,SKU,Price\nFilter ulja,00123,12.50\nSvjecica,,NA\n"

    batch = read_csv_source(data)

    assert batch.headers == ["Title", "SKU", "Price"]
    assert len(batch) == 2
    assert batch.rows[0] == {"Title": "Filter ulja", "SKU": "00123", "Price": "12.50"}
    # no NA coercion, blanks stay blank
    assert batch.rows[1] == {"Title": "Svjecica", "SKU": "", "Price": "NA"}


def test_read_csv_from_path(tmp_path):
    path = tmp_path / "products.csv"
    path.write_text("title,price\nKočione pločice,45\n", encoding="utf-8")

    batch = read_csv_source(path)

    assert batch.rows == [{"title": "Kočione pločice", "price": "45"}]


def test_empty_csv_is_a_parse_error():
    with pytest.raises(ParseError, match="empty"):
        read_csv_source(b"")


def test_ragged_csv_is_a_parse_error():
    with pytest.raises(ParseError):
        read_csv_source(io.BytesIO(b"a,b\n1,2,3,4\n"))


def test_extra_field_in_first_row_is_not_read_as_an_index():
    with pytest.raises(ParseError):
        read_csv_source(b"Title,Price\nA,1,EXTRA\nB,2\n")


def test_short_rows_are_padded_with_blanks():
    batch = read_csv_source(b"Title,Price\nA,1\nB\n")

    assert batch.rows == [{"Title": "A", "Price": "1"}, {"Title": "B", "Price": ""}]


def test_non_utf8_csv_is_a_parse_error():
    with pytest.raises(ParseError):
        read_csv_source("title\nKočnice\n".encode("cp1250"))


def test_missing_file_is_a_parse_error(tmp_path):
    with pytest.raises(ParseError):
        read_csv_source(tmp_path / "missing.csv")


def test_read_json_collects_headers_from_all_items():
    data = json.dumps([{"title": "A", "sku": "1"}, {"title": "B", "price": "3"}]).encode()

    batch = read_json_source(data)

    assert batch.headers == ["price", "sku", "title"]
    assert len(batch) == 2


@pytest.mark.parametrize("payload", [b"{\"title\": \"A\"}", b"[1, 2]", b"not json"])
def test_read_json_rejects_anything_but_an_array_of_objects(payload):
    with pytest.raises(ParseError):
        read_json_source(payload)
