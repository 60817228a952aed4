"""
Pydantic schemas for catalog snapshots with required-field validation
"""

from pydantic import BaseModel, Field, validator, ValidationError
from typing import Optional, List, Any
import math

from core.exceptions import ItemValidationError

# Catalog fields mirrored onto the stock record on every changed sync
SYNCED_FIELDS = (
    "description",
    "posting_group",
    "base_unit_code",
    "unit_price",
    "vendor_code",
    "brand",
    "attribut_1",
    "pricelist",
)


class CatalogItemSnapshot(BaseModel):
    """
    Target stock state derived from one catalog row.

    Ensures:
    - item_code is present and non-blank after stripping
    - unit_price is not negative
    - blank optional text is stored as NULL
    """

    item_code: str = Field(..., min_length=1, max_length=50)

    description: Optional[str] = None
    posting_group: Optional[str] = Field(None, max_length=50)
    base_unit_code: Optional[str] = Field(None, max_length=20)
    unit_price: Optional[float] = Field(None, ge=0)
    vendor_code: Optional[str] = Field(None, max_length=50)
    brand: Optional[str] = Field(None, max_length=100)
    attribut_1: Optional[str] = Field(None, max_length=100)
    pricelist: Optional[bool] = None

    @validator("item_code", pre=True)
    def clean_item_code(cls, v):
        """Strip the code and reject empty values"""
        if v is None:
            raise ValueError("item_code is required")
        v = str(v).strip()
        if not v:
            raise ValueError("item_code cannot be empty")
        return v

    @validator(
        "description", "posting_group", "base_unit_code",
        "vendor_code", "brand", "attribut_1",
        pre=True
    )
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @classmethod
    def from_catalog(cls, row: Any) -> "CatalogItemSnapshot":
        """
        Build a snapshot from a CatalogItem row.

        Raises:
            ItemValidationError: If the row fails required-field checks
        """
        raw = {"item_code": row.item_code}
        raw.update({field: getattr(row, field) for field in SYNCED_FIELDS})

        try:
            return cls(**raw)
        except ValidationError as e:
            field_errors = {
                ".".join(str(part) for part in err["loc"]): err["msg"]
                for err in e.errors()
            }
            message = "; ".join(f"{field}: {msg}" for field, msg in field_errors.items())
            raise ItemValidationError(
                message,
                item_code=row.item_code,
                context={
                    "catalog_id": getattr(row, "id", None),
                    "field_errors": field_errors
                },
                original_exception=e
            )

    def changed_fields(self, record: Any) -> List[str]:
        """Return the mirrored fields whose stock value differs from this snapshot"""
        changed = []
        for field in SYNCED_FIELDS:
            target = getattr(self, field)
            current = getattr(record, field)

            if isinstance(target, float) and current is not None:
                if not math.isclose(target, float(current), rel_tol=1e-9, abs_tol=1e-9):
                    changed.append(field)
            elif target != current:
                changed.append(field)

        return changed

    def stock_values(self) -> dict:
        """Column values to write onto the stock record"""
        return self.dict(include={"item_code", *SYNCED_FIELDS})
