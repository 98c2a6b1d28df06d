from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

ZONE_STATUS_PATTERN = "^(active|inactive)$"
LOCATION_STATUS_PATTERN = "^(active|inactive|locked)$"
ZONE_TYPE_PATTERN = "^(RBS|CUSTOM)$"
PLAN_KIND_PATTERN = "^(RECEIVING|DESTUFFING)$"


class ZoneCreate(BaseModel):
    code: str = Field(..., pattern="^[A-Z]{1,2}$")
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    type: str = Field("RBS", pattern=ZONE_TYPE_PATTERN)
    status: str = Field("active", pattern=ZONE_STATUS_PATTERN)

    @field_validator("code", "name", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value


class ZoneUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    status: str | None = Field(default=None, pattern=ZONE_STATUS_PATTERN)


class ZoneStatusUpdate(BaseModel):
    status: str = Field(..., pattern=ZONE_STATUS_PATTERN)


class ZoneOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    description: str
    type: str
    status: str
    created_at: datetime
    updated_at: datetime


class LocationFields(BaseModel):
    """Addressing as typed by an operator; normalized by the location codec."""

    rbs_row: str | None = None
    rbs_bay: str | None = None
    rbs_slot: str | None = None
    custom_label: str | None = None


class LocationCreate(LocationFields):
    zone_id: int = Field(..., gt=0)
    status: str = Field("inactive", pattern=LOCATION_STATUS_PATTERN)


class LocationPreview(LocationFields):
    zone_id: int = Field(..., gt=0)


class LocationUpdate(LocationFields):
    status: str | None = Field(default=None, pattern=LOCATION_STATUS_PATTERN)


class LocationStatusUpdate(BaseModel):
    status: str = Field(..., pattern=LOCATION_STATUS_PATTERN)


class LocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    zone_id: int
    zone_code: str
    zone_type: str
    rbs_row: str | None
    rbs_bay: str | None
    rbs_slot: str | None
    custom_label: str | None
    location_code: str
    absolute_code: str
    display_code: str
    status: str


class CodesOut(BaseModel):
    location_code: str | None = None
    absolute_code: str | None = None
    display_code: str | None = None


class LayoutBay(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    slots_count: int = Field(..., alias="slotsCount")


class LayoutRow(BaseModel):
    bays: list[LayoutBay] = []


class LayoutRequest(BaseModel):
    rows: list[LayoutRow] = []

    def wire_rows(self) -> list[dict]:
        return self.model_dump(by_alias=True)["rows"]


class LayoutPreviewOut(BaseModel):
    codes: list[str]
    total: int


class LayoutAssignment(BaseModel):
    row_index: int
    bay_index: int
    slot_index: int
    assigned_code: str


class LayoutCreated(BaseModel):
    created: list[LocationOut]
    assignments: list[LayoutAssignment]


class ContainerNumbersCheck(BaseModel):
    numbers: list[str] = Field(..., min_length=1)


class ContainerNumberResult(BaseModel):
    input: str
    valid: bool
    normalized: str | None = None
    display: str | None = None
    error: dict | None = None


class PlanCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    kind: str = Field(..., pattern=PLAN_KIND_PATTERN)
    status: str = Field("SCHEDULED", pattern="^(PENDING|SCHEDULED)$")
    container_refs: list[str] = Field(..., min_length=1)
    created_by: str | None = None


class PlanContainerStatusUpdate(BaseModel):
    status: str = Field(..., pattern="^(IN_PROGRESS|RECEIVED|REJECTED|DEFERRED|DONE)$")
    received_type: str = Field("NORMAL", pattern="^(NORMAL|PROBLEM|ADJUSTED_DOCUMENT)$")
    notes: str | None = None


class PlanContainerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    container_ref: str
    status: str
    received_type: str
    notes: str | None
    last_action_at: datetime | None


class PlanActionsOut(BaseModel):
    can_cancel: bool
    can_mark_done: bool
    can_mark_pending: bool


class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    kind: str
    status: str
    created_by: str | None
    execution_start: datetime | None
    execution_end: datetime | None
    containers: list[PlanContainerOut]
    actions: PlanActionsOut | None = None


class ExecutionSummaryOut(BaseModel):
    total: int
    waiting: int
    received: int
    rejected: int
    deferred: int
    problem: int
    adjusted: int
    can_mark_done: bool
    can_mark_pending: bool


class OperationLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    module: str
    action: str
    entity: str
    entity_id: int | None
    detail: str
    before_value: str | None
    after_value: str | None
    request_source: str | None
    trace_id: str | None
    created_at: datetime
