"""
Excel reader for batch and bulk issuance.
"""

import io
import zipfile
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List

import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from ..core import messages
from ..core.errors import ArtifactError, ValidationError
from ..utils.logger import get_logger

logger = get_logger("spreadsheet_service")

REQUIRED_HEADERS = ("certificationID", "name", "certificationName", "grantDate", "expirationDate")
FILE_STEM_HEADER = "Certs"


@dataclass
class CertificateRow:
    """One certificate row from the spreadsheet."""
    row_number: int
    certificate_number: str
    name: str
    course: str
    grant_date: str
    expiration_date: str
    file_stem: str


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%m/%d/%Y")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_certificate_rows(content: bytes) -> List[CertificateRow]:
    """
    Read certificate rows from the first worksheet.

    Args:
        content: .xlsx bytes

    Returns:
        Rows in sheet order, blank rows skipped

    Raises:
        ArtifactError: If the file is not a readable workbook
        ValidationError: On bad headers, missing values, no rows or duplicate IDs
    """
    try:
        workbook = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        logger.error(f"Unable to read workbook: {e}")
        raise ArtifactError(messages.MUST_EXCEL, details=str(e))

    try:
        worksheet = workbook.worksheets[0]
        rows = worksheet.iter_rows(values_only=True)
        header_row = next(rows, None) or ()
        headers = [_cell_text(cell) for cell in header_row]

        missing = [header for header in REQUIRED_HEADERS if header not in headers]
        if missing:
            raise ValidationError(
                messages.INVALID_EXCEL.format(headers=", ".join(REQUIRED_HEADERS)),
                details=missing
            )
        index = {header: headers.index(header) for header in headers if header}

        records: List[CertificateRow] = []
        for row_number, row in enumerate(rows, start=2):
            values = {header: _cell_text(row[i]) if i < len(row) else "" for header, i in index.items()}
            if not any(values.get(header) for header in REQUIRED_HEADERS):
                continue
            blank = [header for header in REQUIRED_HEADERS if not values.get(header)]
            if blank:
                raise ValidationError(
                    messages.EXCEL_MISSING_FIELDS,
                    details={"row": row_number, "fields": blank}
                )
            records.append(CertificateRow(
                row_number=row_number,
                certificate_number=values["certificationID"],
                name=values["name"],
                course=values["certificationName"],
                grant_date=values["grantDate"],
                expiration_date=values["expirationDate"],
                file_stem=values.get(FILE_STEM_HEADER) or values["certificationID"],
            ))
    finally:
        workbook.close()

    if not records:
        raise ValidationError(messages.EXCEL_NO_RECORDS)

    seen = set()
    duplicates = []
    for record in records:
        if record.certificate_number in seen:
            duplicates.append(record.certificate_number)
        seen.add(record.certificate_number)
    if duplicates:
        raise ValidationError(messages.EXCEL_DUPLICATE_IDS, details=duplicates)

    logger.info(f"Read {len(records)} certificate rows from workbook")
    return records
