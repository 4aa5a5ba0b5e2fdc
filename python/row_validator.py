"""
Row validation for the CSV reconciliation import

Each check is a named predicate over one raw row. validate_row() runs them in
order and collects one message per failed check, prefixed with the row's
line number in the source file. Nothing here touches the database.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, List, Mapping

# Columns every import file is expected to carry
CSV_FIELDS = (
    "client_code",
    "first_name",
    "last_name",
    "email",
    "phone",
    "address",
    "city",
    "department",
    "invoice_number",
    "billing_period",
    "total_amount",
    "paid_amount",
    "invoice_status",
    "transaction_reference",
    "transaction_date",
    "transaction_amount",
    "transaction_type",
    "transaction_status",
    "platform_name",
)


def is_present(row: Mapping[str, Any], field: str) -> bool:
    """True when the cell exists and is not blank."""
    value = row.get(field)
    return value is not None and str(value).strip() != ""


def is_number(value: Any) -> bool:
    try:
        return Decimal(str(value).strip()).is_finite()
    except InvalidOperation:
        return False


def _all_present(*fields: str) -> Callable[[Mapping[str, Any]], bool]:
    return lambda row: all(is_present(row, field) for field in fields)


def _numeric_if_present(field: str) -> Callable[[Mapping[str, Any]], bool]:
    return lambda row: not is_present(row, field) or is_number(row[field])


@dataclass(frozen=True)
class RowCheck:
    """A named predicate; message is reported when the predicate is False."""
    name: str
    predicate: Callable[[Mapping[str, Any]], bool]
    message: str


ROW_CHECKS = (
    RowCheck("client_info", _all_present("client_code", "first_name", "last_name"),
             "Missing required client information"),
    RowCheck("invoice_number", _all_present("invoice_number"), "Missing invoice number"),
    RowCheck("transaction_reference", _all_present("transaction_reference"),
             "Missing transaction reference"),
    RowCheck("platform_name", _all_present("platform_name"), "Missing platform name"),
    RowCheck("total_amount", _numeric_if_present("total_amount"), "Invalid total amount"),
    RowCheck("paid_amount", _numeric_if_present("paid_amount"), "Invalid paid amount"),
    RowCheck("transaction_amount", _numeric_if_present("transaction_amount"),
             "Invalid transaction amount"),
)


def validate_row(row: Mapping[str, Any], row_number: int) -> List[str]:
    """Validate one raw import row.

    Args:
        row: Mapping of CSV column name to cell text
        row_number: Line number of the row in the source file

    Returns:
        Defect messages such as "Row 3: Missing invoice number";
        an empty list when the row can be imported
    """
    return [
        f"Row {row_number}: {check.message}"
        for check in ROW_CHECKS
        if not check.predicate(row)
    ]
