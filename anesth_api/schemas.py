from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    username: str
    password: str


class UserProfile(BaseModel):
    id: uuid.UUID
    username: str
    full_name: Optional[str] = None
    role: str
    active: bool
    created_at: dt.datetime


class ThresholdsOut(BaseModel):
    critical: int
    low: int
    normal: int
    is_dynamic: bool
    cmm: float


class MedicationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    stock: int = Field(default=0, ge=0)
    is_narcotic: bool = False
    expiry: Optional[dt.date] = None


class MedicationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    stock: Optional[int] = Field(default=None, ge=0)
    is_narcotic: Optional[bool] = None
    expiry: Optional[dt.date] = None

    @field_validator("name", "stock", "is_narcotic")
    @classmethod
    def _reject_null(cls, value):
        # only expiry may be cleared
        if value is None:
            raise ValueError("valeur requise")
        return value


class MedicationOut(BaseModel):
    id: uuid.UUID
    name: str
    stock: int
    is_narcotic: bool
    expiry: Optional[dt.date] = None
    created_at: dt.datetime
    status: str
    expiry_status: Optional[str] = None
    thresholds: ThresholdsOut


class MonthlyConsumptionOut(BaseModel):
    month: dt.date
    quantity: int
    count: int


class ConsumptionOut(BaseModel):
    med_id: uuid.UUID
    months: list[MonthlyConsumptionOut]
    trend: str
    trend_percentage: int
    thresholds: ThresholdsOut


class ConsumptionRowOut(BaseModel):
    med_id: uuid.UUID
    name: str
    is_narcotic: bool
    cmm: float
    trend: str
    trend_percentage: int
    thresholds: ThresholdsOut


class TransactionOut(BaseModel):
    id: uuid.UUID
    med_id: uuid.UUID
    med_name: str
    type: str
    quantity: int
    date: dt.datetime
    status: str
    category: str
    batch_id: Optional[uuid.UUID] = None
    details: dict[str, Any] = Field(default_factory=dict)


class BatchOut(BaseModel):
    batch_id: Optional[uuid.UUID] = None
    date: dt.datetime
    status: str
    details: dict[str, Any] = Field(default_factory=dict)
    items: list[TransactionOut] = Field(default_factory=list)


class ReceptionLine(BaseModel):
    med_id: uuid.UUID
    quantity: int = Field(gt=0)
    expiry_date: Optional[dt.date] = None


class ReceptionCreate(BaseModel):
    items: list[ReceptionLine] = Field(min_length=1)
    supplier: Optional[str] = Field(default=None, max_length=128)
    reception_date: Optional[dt.date] = None
    comment: Optional[str] = None


class BatchResult(BaseModel):
    batch_id: uuid.UUID
    lines: int
    stock: dict[uuid.UUID, int] = Field(default_factory=dict)


class ExitLineIn(BaseModel):
    med_id: uuid.UUID
    quantity: int = Field(gt=0)


class ExitCreate(BaseModel):
    items: list[ExitLineIn] = Field(min_length=1)
    patient_initials: str = Field(min_length=1, max_length=8)
    patient_age: int = Field(ge=0, le=130)
    intervention: str = Field(default="Autre", max_length=64)
    intervention_date: Optional[dt.date] = None


class IncidentCreate(BaseModel):
    med_id: uuid.UUID
    quantity: int = Field(gt=0)
    reason: Literal["BREAKAGE", "EXPIRED", "LOSS", "OTHER"]
    comment: str = Field(default="", max_length=500)


class IncidentResolve(BaseModel):
    action: Literal["VALIDATE", "REJECT"]


class AuditLineOut(BaseModel):
    med_id: uuid.UUID
    med_name: str
    is_narcotic: bool
    theoretical_stock: int
    physical_stock: int
    gap: int
    comment: str = ""
    expected_empty_vials: Optional[int] = None
    physical_empty_vials: Optional[int] = None


class AuditDraftOut(BaseModel):
    started_at: dt.datetime
    since: dt.datetime
    total_items: int
    discrepancy_count: int
    lines: list[AuditLineOut]


class AuditCount(BaseModel):
    med_id: uuid.UUID
    physical_stock: int = Field(ge=0)
    comment: str = Field(default="", max_length=500)
    physical_empty_vials: Optional[int] = Field(default=None, ge=0)


class AuditCreate(BaseModel):
    counts: list[AuditCount] = Field(default_factory=list)


class AuditOut(BaseModel):
    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    status: str
    total_items: int
    discrepancy_count: int
    created_at: dt.datetime
    items: list[AuditLineOut] = Field(default_factory=list)


class AlertConfigPayload(BaseModel):
    normal: float = Field(gt=0)
    low: float = Field(gt=0)
    critical: float = Field(gt=0)
    min_absolute: int = Field(ge=0)
    static_normal: int = Field(ge=0)
    static_low: int = Field(ge=0)
    static_critical: int = Field(ge=0)


class MedicationAlertOut(BaseModel):
    id: uuid.UUID
    name: str
    stock: int
    status: str
    expiry: Optional[dt.date] = None
    expiry_status: Optional[str] = None


class DashboardOut(BaseModel):
    total_references: int
    total_units: int
    low: list[MedicationAlertOut]
    critical: list[MedicationAlertOut]
    expiring: list[MedicationAlertOut]
    pending_receptions: int
    pending_incidents: int
    recent: list[TransactionOut]


class NamedCount(BaseModel):
    name: str
    value: int


class DailyCount(BaseModel):
    date: dt.date
    value: int


class StatisticsOut(BaseModel):
    days: int
    total_units: int
    total_interventions: int
    top_consumed: list[NamedCount]
    interventions: list[NamedCount]
    daily: list[DailyCount]


class CatalogItem(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    stock: int = Field(default=0, ge=0)
    is_narcotic: bool = False
    expiry: Optional[dt.date] = None


class CatalogImportRequest(BaseModel):
    items: list[CatalogItem]


class CatalogImportResult(BaseModel):
    created: int
    updated: int


class ProbeResponse(BaseModel):
    available: bool
    path: str | None = None


class ActivityEntry(BaseModel):
    id: uuid.UUID
    entity: str
    entity_id: str
    action: str
    payload_json: dict
    user_id: Optional[uuid.UUID] = None
    ts: dt.datetime


class MedicationRecord(BaseModel):
    id: uuid.UUID
    name: str
    stock: int
    is_narcotic: bool
    expiry: Optional[dt.date] = None
    created_at: dt.datetime
    updated_at: dt.datetime


class BackupOut(BaseModel):
    version: str
    export_date: dt.datetime
    medications: list[MedicationRecord]
    transactions: list[TransactionOut]
