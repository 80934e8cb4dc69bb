"""
Pydantic schemas and value types shared by every stage of the import pipeline.
"""
import datetime as dt
import re
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

import settings


class FileKind(str, Enum):
    DELIMITED_TABLE = "delimited-table"
    SPREADSHEET = "spreadsheet"
    TEXT_DOCUMENT = "text-document"
    IMAGE = "image"
    UNSUPPORTED = "unsupported"


class TransactionType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    FEE = "FEE"
    INTEREST = "INTEREST"
    TRANSFER = "TRANSFER"
    CARD = "CARD"
    ATM = "ATM"
    CHECK = "CHECK"
    OTHER = "OTHER"


class CanonicalField(str, Enum):
    DATE = "date"
    VALUE_DATE = "valueDate"
    AMOUNT = "amount"
    BALANCE = "balance"
    DESCRIPTION = "description"
    REFERENCE = "reference"
    ACCOUNT_NUMBER = "accountNumber"


class CellKind(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    ABSENT = "absent"


@dataclass(frozen=True)
class Cell:
    """One raw cell of an imported row."""

    kind: CellKind
    value: Union[str, Decimal, dt.date, None] = None

    @classmethod
    def of_text(cls, value: str) -> "Cell":
        return cls(CellKind.TEXT, value)

    @classmethod
    def of_number(cls, value: Union[int, float, Decimal]) -> "Cell":
        return cls(CellKind.NUMBER, value if isinstance(value, Decimal) else Decimal(str(value)))

    @classmethod
    def of_date(cls, value: dt.date) -> "Cell":
        if isinstance(value, dt.datetime):
            value = value.date()
        return cls(CellKind.DATE, value)

    @classmethod
    def absent(cls) -> "Cell":
        return _ABSENT

    @classmethod
    def from_raw(cls, value: Any) -> "Cell":
        """Convert a value coming from pandas or plain Python into a cell."""
        if value is None:
            return _ABSENT
        if not isinstance(value, (str, bytes)) and pd.api.types.is_scalar(value) and pd.isna(value):
            return _ABSENT
        if isinstance(value, Cell):
            return value
        if isinstance(value, (dt.datetime, dt.date)):
            return cls.of_date(value)
        if isinstance(value, bool):
            return cls.of_text(str(value))
        if isinstance(value, (int, float, Decimal)):
            return cls.of_number(value)
        text = str(value)
        if not text.strip():
            return _ABSENT
        return cls.of_text(text)

    @property
    def is_absent(self) -> bool:
        return self.kind is CellKind.ABSENT

    def as_text(self) -> str:
        if self.kind is CellKind.ABSENT:
            return ""
        if self.kind is CellKind.NUMBER:
            return format(self.value, "f")
        if self.kind is CellKind.DATE:
            return self.value.isoformat()
        return self.value


_ABSENT = Cell(CellKind.ABSENT)


@dataclass
class ImportedRow:
    """Column label -> raw cell, in source column order."""

    cells: Dict[str, Cell] = field(default_factory=dict)

    @classmethod
    def from_values(cls, values: Mapping[str, Any]) -> "ImportedRow":
        return cls({str(label): Cell.from_raw(value) for label, value in values.items()})

    def get(self, label: str) -> Cell:
        return self.cells.get(label, _ABSENT)

    def labels(self) -> List[str]:
        return list(self.cells)

    def to_dict(self) -> Dict[str, str]:
        return {label: cell.as_text() for label, cell in self.cells.items()}


class NamedTransform(str, Enum):
    """Pure string transforms that a column mapping may apply to its cell."""

    STRIP = "strip"
    UPPER = "upper"
    LOWER = "lower"
    DIGITS_ONLY = "digits_only"
    NEGATE = "negate"
    ABSOLUTE = "absolute"
    COLLAPSE_SPACES = "collapse_spaces"

    def apply(self, text: str) -> str:
        if self is NamedTransform.STRIP:
            return text.strip()
        if self is NamedTransform.UPPER:
            return text.upper()
        if self is NamedTransform.LOWER:
            return text.lower()
        if self is NamedTransform.DIGITS_ONLY:
            return re.sub(r"\D", "", text)
        if self is NamedTransform.COLLAPSE_SPACES:
            return " ".join(text.split())
        stripped = text.strip()
        if self is NamedTransform.ABSOLUTE:
            return stripped.strip("-()").strip()
        # NEGATE
        if stripped.startswith("-"):
            return stripped[1:].strip()
        if stripped.startswith("(") and stripped.endswith(")"):
            return stripped[1:-1].strip()
        return "-" + stripped


class ColumnMapping(BaseModel):
    """Association between a source column label and a canonical field."""

    source_column: str = Field(..., alias="sourceColumn")
    target_field: CanonicalField = Field(..., alias="targetField")
    transform: Optional[NamedTransform] = None

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ImportConfig(BaseModel):
    """Options for a single import; every field has a default."""

    has_header: bool = Field(True, alias="hasHeader")
    skip_rows: int = Field(0, ge=0, alias="skipRows")
    date_format: Optional[str] = Field(None, alias="dateFormat")
    decimal_separator: str = Field(",", alias="decimalSeparator")
    thousands_separator: str = Field(" ", alias="thousandsSeparator")
    column_mappings: Optional[List[ColumnMapping]] = Field(None, alias="columnMappings")
    client_id: str = Field("default", alias="clientId")
    bank_code: str = Field("UNKNOWN", alias="bankCode")
    account_number: Optional[str] = Field(None, alias="accountNumber")
    max_file_size: int = Field(settings.MAX_FILE_SIZE, gt=0, alias="maxFileSize")
    min_text_chars: int = Field(settings.MIN_TEXT_CHARS, ge=0, alias="minTextChars")
    ocr_render_scale: float = Field(settings.OCR_RENDER_SCALE, gt=0, alias="ocrRenderScale")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("decimal_separator")
    @classmethod
    def validate_decimal_separator(cls, v):
        if v not in (",", "."):
            raise ValueError("Decimal separator must be ',' or '.'")
        return v

    @field_validator("thousands_separator")
    @classmethod
    def validate_thousands_separator(cls, v):
        if v not in (",", ".", " ", ""):
            raise ValueError("Thousands separator must be ',', '.', ' ' or empty")
        return v

    @model_validator(mode="after")
    def validate_separators_differ(self):
        if self.decimal_separator == self.thousands_separator:
            raise ValueError("Decimal and thousands separators must differ")
        return self


class Transaction(BaseModel):
    """Canonical transaction produced by every ingestion path."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    client_id: str = Field(..., alias="clientId")
    account_number: str = Field(..., alias="accountNumber")
    bank_code: str = Field(..., alias="bankCode")
    date: dt.date
    value_date: dt.date = Field(..., alias="valueDate")
    amount: Decimal
    balance: Decimal = Decimal("0")
    description: str
    reference: str = ""
    type: TransactionType
    created_at: dt.datetime = Field(default_factory=dt.datetime.now, alias="createdAt")
    updated_at: dt.datetime = Field(default_factory=dt.datetime.now, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("description")
    @classmethod
    def validate_description(cls, v):
        """Descriptions are stored trimmed and may not be blank."""
        v = v.strip()
        if not v:
            raise ValueError("Description must not be empty")
        return v


class ImportErrorEntry(BaseModel):
    """An error reported in an import result (row 0 = whole file)."""

    row: int = Field(..., ge=0)
    message: str
    reason: Optional[str] = None
    column: Optional[str] = None
    value: Optional[str] = None


class ImportResult(BaseModel):
    """Outcome of importing one file."""

    success: bool
    total_rows: int = Field(0, alias="totalRows")
    imported_rows: int = Field(0, alias="importedRows")
    skipped_rows: int = Field(0, alias="skippedRows")
    errors: List[ImportErrorEntry] = Field(default_factory=list)
    transactions: List[Transaction] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)


@dataclass(frozen=True)
class RawDocument:
    """Bytes of an uploaded statement plus what the caller declared about it."""

    content: bytes
    name: str
    media_type: str = ""

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: Union[str, Path], media_type: str = "") -> "RawDocument":
        path = Path(path)
        return cls(content=path.read_bytes(), name=path.name, media_type=media_type)
