# app/services/csv_import/reader.py
"""
Raw source readers.

Both readers produce an ordered list of flat ``{column: value}`` dicts and
never interpret values; that is the normalizer's job.
"""

import io
import json
import logging
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Union

import pandas as pd

from app.core.exceptions import ParseError

logger = logging.getLogger(__name__)

RawInput = Union[str, Path, bytes, io.IOBase]


@dataclass
class RawBatch:
    headers: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)

    def __len__(self):
        return len(self.rows)


def _as_buffer(raw_input: RawInput):
    if isinstance(raw_input, bytes):
        return io.BytesIO(raw_input)
    if isinstance(raw_input, Path):
        return str(raw_input)
    return raw_input


def read_csv_source(raw_input: RawInput) -> RawBatch:
    """
    Read a UTF-8 CSV with a header row.

    Every cell is kept as a string (no NA coercion), blank cells are "".
    A malformed file raises ParseError.
    """
    try:
        with warnings.catch_warnings():
            # a data row longer than the header only warns with index_col=False
            warnings.simplefilter("error", pd.errors.ParserWarning)
            df = pd.read_csv(
                _as_buffer(raw_input),
                dtype=str,
                keep_default_na=False,
                encoding="utf-8",
                skipinitialspace=False,
                index_col=False,
            )
    except pd.errors.ParserWarning as e:
        raise ParseError(f"CSV parsing error: row has more fields than the header ({e})") from e
    except pd.errors.EmptyDataError as e:
        raise ParseError(f"CSV file is empty: {e}") from e
    except (pd.errors.ParserError, UnicodeDecodeError, ValueError) as e:
        raise ParseError(f"CSV parsing error: {e}") from e
    except OSError as e:
        raise ParseError(f"Cannot open CSV source: {e}") from e

    headers = [str(c) for c in df.columns]
    rows = df.to_dict(orient="records")
    logger.info(f"Read {len(rows)} CSV rows with {len(headers)} columns")
    return RawBatch(headers=headers, rows=rows)


def read_json_source(raw_input: RawInput) -> RawBatch:
    """Read a scraper output file: a JSON array of flat product objects."""
    try:
        if isinstance(raw_input, (str, Path)):
            with open(raw_input, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        elif isinstance(raw_input, bytes):
            data = json.loads(raw_input.decode("utf-8"))
        else:
            data = json.load(raw_input)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ParseError(f"JSON parsing error: {e}") from e
    except OSError as e:
        raise ParseError(f"Cannot open JSON source: {e}") from e

    if not isinstance(data, list):
        raise ParseError("Scraper output must be a JSON array of products")

    rows = []
    for index, item in enumerate(data, start=1):
        if not isinstance(item, dict):
            raise ParseError(f"Item {index} is not a JSON object")
        rows.append(item)

    headers = sorted({key for row in rows for key in row})
    logger.info(f"Read {len(rows)} scraped products")
    return RawBatch(headers=headers, rows=rows)
