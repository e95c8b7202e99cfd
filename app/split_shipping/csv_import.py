"""Reads an address CSV into review rows."""
import csv
import io
from typing import List

from pydantic import ValidationError

from app.schemas.cart import Address
from app.schemas.split_shipping import ReviewRow
from app.split_shipping.errors import CsvImportError

# CSV column -> Address field
COLUMN_MAP = {
    "firstname": "first_name",
    "lastname": "last_name",
    "streetnumber": "street_number",
    "streetname": "street_name",
    "city": "city",
    "state": "state",
    "zipcode": "postal_code",
    "postalcode": "postal_code",
    "country": "country",
    "company": "company",
    "email": "email",
    "additionaladdressinfo": "additional_address_info",
}
REQUIRED_COLUMNS = {"streetname", "city", "country"}


def _normalize(name: str) -> str:
    return (name or "").strip().lower().replace("_", "").replace(" ", "")


def parse_address_rows(content: str) -> List[ReviewRow]:
    # utf-8-sig exports from spreadsheets start with a BOM
    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    if not reader.fieldnames:
        raise CsvImportError("CSV file is empty")
    headers = {_normalize(h): h for h in reader.fieldnames if h}
    missing = REQUIRED_COLUMNS - headers.keys()
    if missing:
        raise CsvImportError(f"CSV is missing required columns: {', '.join(sorted(missing))}")

    rows: List[ReviewRow] = []
    for line_no, raw in enumerate(reader, start=2):
        values = {_normalize(k): (v or "").strip() for k, v in raw.items() if k}
        if not any(values.values()):
            continue
        fields = {}
        for column, attr in COLUMN_MAP.items():
            if values.get(column):
                fields[attr] = values[column]
        if fields.get("country"):
            fields["country"] = fields["country"].upper()

        quantity_raw = values.get("quantity", "")
        if quantity_raw:
            try:
                quantity = int(quantity_raw)
            except ValueError:
                raise CsvImportError(f"Line {line_no}: quantity must be a whole number, got {quantity_raw!r}")
            if quantity < 0:
                raise CsvImportError(f"Line {line_no}: quantity cannot be negative")
        else:
            quantity = 1

        key = values.get("key") or None
        try:
            rows.append(ReviewRow(key=key, address=Address(key=key, **fields), quantity=quantity))
        except ValidationError as e:
            problem = e.errors()[0]
            field_name = ".".join(str(p) for p in problem["loc"]) or "row"
            raise CsvImportError(f"Line {line_no}: {field_name} {problem['msg'].lower()}") from e
    return rows
