"""
Stored farm-state records.

These mirror the rows the wider farm-management application writes (users,
farms, tasks, crop entries and activities, livestock entries and health
records, price alerts, expenses, incomes).  The decision support engine only
reads them; the context builder derives ``EvaluationContext`` facts from them.

Weather observations and market prices are stored directly as the
``WeatherContext`` / ``MarketPrice`` models from ``models.context``.

Validation rules:
  - Quantities and amounts are non-negative.
  - Status values are uppercase and drawn from the closed sets the schema
    CHECK constraints enforce.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator

TaskStatus = Literal["PENDING", "IN_PROGRESS", "COMPLETED", "CANCELLED"]
CropStatus = Literal["PLANNED", "GROWING", "HARVESTED", "FAILED"]
LivestockStatus = Literal["ACTIVE", "SOLD", "DECEASED", "TRANSFERRED"]
HealthRecordType = Literal["VACCINATION", "DEWORMING", "TREATMENT", "CHECKUP"]


class UserRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    name: str
    email: Optional[str] = None
    region: Optional[str] = None


class FarmRecord(BaseModel):
    """A farm owned by exactly one user."""

    model_config = ConfigDict(frozen=True)

    farm_id: str
    user_id: str
    name: str
    region: Optional[str] = None
    district: Optional[str] = None
    size: Optional[float] = None
    size_unit: str = "acres"
    created_at: Optional[datetime] = None


class TaskRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    task_id: str
    user_id: str
    farm_id: Optional[str] = None
    title: str
    status: TaskStatus = "PENDING"
    due_date: Optional[datetime] = None


class CropEntryRecord(BaseModel):
    """A planting of one crop type on one farm."""

    model_config = ConfigDict(frozen=True)

    crop_entry_id: str
    user_id: str
    farm_id: str
    crop_type: str
    variety: Optional[str] = None
    status: CropStatus = "PLANNED"
    planting_date: Optional[datetime] = None
    expected_harvest_date: Optional[datetime] = None
    land_area: Optional[float] = None
    land_area_unit: Optional[str] = None
    yield_quantity: Optional[float] = None
    yield_unit: Optional[str] = None

    @field_validator("land_area", "yield_quantity")
    @classmethod
    def validate_non_negative(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v < 0:
            raise ValueError(f"must be >= 0, got {v}.")
        return v


class CropActivityRecord(BaseModel):
    """A logged field activity (FERTILIZER_APPLICATION, WEEDING, ...)."""

    model_config = ConfigDict(frozen=True)

    activity_id: Optional[int] = None
    crop_entry_id: str
    activity_type: str
    activity_date: datetime
    notes: Optional[str] = None


class LivestockEntryRecord(BaseModel):
    """A flock or herd of one livestock type on one farm.

    ``initial_quantity`` is the head count at acquisition; together with the
    current ``quantity`` it yields the mortality rate.
    """

    model_config = ConfigDict(frozen=True)

    livestock_entry_id: str
    user_id: str
    farm_id: str
    livestock_type: str
    breed: Optional[str] = None
    quantity: int = 0
    initial_quantity: Optional[int] = None
    acquired_date: Optional[datetime] = None
    status: LivestockStatus = "ACTIVE"

    @field_validator("quantity", "initial_quantity")
    @classmethod
    def validate_non_negative(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError(f"must be >= 0, got {v}.")
        return v


class HealthRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    record_id: Optional[int] = None
    livestock_entry_id: str
    record_type: HealthRecordType
    record_date: datetime
    vaccine_name: Optional[str] = None
    next_due_date: Optional[datetime] = None
    notes: Optional[str] = None


class PriceAlertRecord(BaseModel):
    """A user-configured price threshold for a product."""

    model_config = ConfigDict(frozen=True)

    alert_id: Optional[int] = None
    user_id: str
    product: str
    condition: Literal["above", "below"]
    target_price: float
    is_active: bool = True


class ExpenseRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    farm_id: Optional[str] = None
    category: str
    amount: float
    expense_date: datetime

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"amount must be >= 0, got {v}.")
        return v


class IncomeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    farm_id: Optional[str] = None
    product_type: str
    total_amount: float
    income_date: datetime

    @field_validator("total_amount")
    @classmethod
    def validate_amount(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"total_amount must be >= 0, got {v}.")
        return v
