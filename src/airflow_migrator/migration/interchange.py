"""Encrypted export file (CSV).

Format::

    conn_id,encrypted_data
    <conn_id>,<fernet token of the record's JSON blob>
    ...

Each token decrypts, under the file key, to the JSON object produced by
``ExportRecord.to_blob()``. A file holding only the header is a valid
export of zero connections. Standard CSV quoting applies.
"""

import csv
import json
import logging
import os
from pathlib import Path
from typing import IO, Iterable, List, Union

from ..crypto import FernetCodec
from ..exceptions import InterchangeFormatError, InvalidTokenError
from .models import ExportRecord

logger = logging.getLogger(__name__)

CSV_HEADERS = ["conn_id", "encrypted_data"]


def write_records(stream: IO[str], records: Iterable[ExportRecord], codec: FernetCodec) -> int:
    """Write header and one encrypted row per record to ``stream``.

    Returns:
        Number of records written
    """
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(CSV_HEADERS)

    count = 0
    for record in records:
        blob = json.dumps(record.to_blob(), separators=(",", ":"))
        writer.writerow([record.conn_id, codec.encrypt_string(blob)])
        count += 1
    return count


def read_records(stream: IO[str], codec: FernetCodec) -> List[ExportRecord]:
    """Parse and decrypt every row of an export stream.

    Raises:
        InterchangeFormatError: Bad header, short row, undecodable text, or
            a payload that is not a JSON object of connection fields
        InvalidTokenError: A row does not decrypt under ``codec``'s key
    """
    reader = csv.reader(stream)
    try:
        rows = list(reader)
    except csv.Error as e:
        raise InterchangeFormatError(f"failed to read CSV: {e}") from e
    except UnicodeDecodeError as e:
        raise InterchangeFormatError(f"export file is not valid UTF-8: {e}") from e

    if not rows:
        return []

    header = [cell.strip() for cell in rows[0]]
    if header[:2] != CSV_HEADERS:
        raise InterchangeFormatError(
            f"unexpected header {rows[0]!r}, expected {CSV_HEADERS!r}"
        )

    records: List[ExportRecord] = []
    for line_no, row in enumerate(rows[1:], start=2):
        if not row:
            continue  # tolerate blank trailing lines
        if len(row) < 2:
            raise InterchangeFormatError(f"invalid row {line_no}: expected 2 columns")

        conn_id, token = row[0], row[1]
        try:
            decrypted = codec.decrypt_string(token)
        except InvalidTokenError as e:
            raise InvalidTokenError(f"failed to decrypt connection {conn_id}: {e}") from e

        try:
            data = json.loads(decrypted)
        except ValueError as e:
            raise InterchangeFormatError(f"failed to parse connection {conn_id}: {e}") from e
        if not isinstance(data, dict):
            raise InterchangeFormatError(
                f"failed to parse connection {conn_id}: expected a JSON object"
            )

        try:
            records.append(ExportRecord.from_blob(conn_id, data))
        except (ValueError, TypeError) as e:
            raise InterchangeFormatError(f"invalid fields in connection {conn_id}: {e}") from e

    return records


def write_encrypted_csv(
    path: Union[str, Path], records: Iterable[ExportRecord], codec: FernetCodec
) -> int:
    """
    Write an export file.

    The file is written under a temporary name and renamed into place, so a
    failure part-way leaves no truncated export behind.
    """
    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", newline="", encoding="utf-8") as f:
            count = write_records(f, records, codec)
        os.replace(tmp_path, path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink()
        raise

    logger.info("Wrote %d encrypted connection(s) to %s", count, path)
    return count


def read_encrypted_csv(path: Union[str, Path], codec: FernetCodec) -> List[ExportRecord]:
    """Read and fully decrypt an export file (nothing is returned on failure)."""
    with open(path, "r", newline="", encoding="utf-8") as f:
        records = read_records(f, codec)
    logger.info("Read %d encrypted connection(s) from %s", len(records), path)
    return records
