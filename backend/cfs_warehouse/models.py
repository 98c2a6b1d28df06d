from datetime import datetime
from sqlalchemy import String, Integer, ForeignKey, DateTime, UniqueConstraint, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from .db import Base
from .location_codes import (
    ZONE_TYPE_RBS,
    CustomAddress,
    LocationAddressing,
    LocationCodes,
    RbsAddress,
    codes_for,
)


class Zone(Base):
    __tablename__ = "zones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(2), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(String(500), default="")
    type: Mapped[str] = mapped_column(String(16), default=ZONE_TYPE_RBS)
    status: Mapped[str] = mapped_column(String(16), default="active")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    locations: Mapped[list["Location"]] = relationship(back_populates="zone")


class Location(Base):
    __tablename__ = "locations"
    __table_args__ = (UniqueConstraint("zone_id", "location_code", name="uq_location_zone_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zone_id: Mapped[int] = mapped_column(ForeignKey("zones.id"), index=True)
    zone_type: Mapped[str] = mapped_column(String(16))
    rbs_row: Mapped[str | None] = mapped_column(String(8), nullable=True)
    rbs_bay: Mapped[str | None] = mapped_column(String(8), nullable=True)
    rbs_slot: Mapped[str | None] = mapped_column(String(8), nullable=True)
    custom_label: Mapped[str | None] = mapped_column(String(20), nullable=True)
    # written only by set_address so it always matches the addressing
    location_code: Mapped[str] = mapped_column(String(32), index=True)
    status: Mapped[str] = mapped_column(String(16), default="inactive")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, onupdate=datetime.now)

    zone: Mapped[Zone] = relationship(back_populates="locations")

    @property
    def address(self) -> LocationAddressing:
        if self.zone_type == ZONE_TYPE_RBS:
            return RbsAddress(self.rbs_row, self.rbs_bay, self.rbs_slot)
        return CustomAddress(self.custom_label)

    def set_address(self, zone_code: str, address: LocationAddressing):
        if isinstance(address, RbsAddress):
            self.rbs_row, self.rbs_bay, self.rbs_slot = address.row, address.bay, address.slot
            self.custom_label = None
        else:
            self.rbs_row = self.rbs_bay = self.rbs_slot = None
            self.custom_label = address.label
        self.location_code = codes_for(zone_code, address).location_code

    @property
    def codes(self) -> LocationCodes:
        return codes_for(self.zone.code, self.address)

    @property
    def absolute_code(self) -> str:
        return self.codes.absolute_code

    @property
    def display_code(self) -> str:
        return self.codes.display_code

    @property
    def zone_code(self) -> str:
        return self.zone.code


class Plan(Base):
    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    kind: Mapped[str] = mapped_column(String(16))  # RECEIVING | DESTUFFING
    status: Mapped[str] = mapped_column(String(16), default="SCHEDULED")
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    execution_start: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    execution_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)

    containers: Mapped[list["PlanContainer"]] = relationship(
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="PlanContainer.id",
    )

    @property
    def container_statuses(self) -> list[str]:
        return [c.status for c in self.containers]


class PlanContainer(Base):
    __tablename__ = "plan_containers"
    __table_args__ = (UniqueConstraint("plan_id", "container_ref", name="uq_plan_container_ref"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    plan_id: Mapped[int] = mapped_column(ForeignKey("plans.id"), index=True)
    container_ref: Mapped[str] = mapped_column(String(11), index=True)
    status: Mapped[str] = mapped_column(String(16), default="WAITING")
    received_type: Mapped[str] = mapped_column(String(32), default="NORMAL")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_action_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    plan: Mapped[Plan] = relationship(back_populates="containers")


class OperationLog(Base):
    __tablename__ = "operation_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    module: Mapped[str] = mapped_column(String(64), index=True)
    action: Mapped[str] = mapped_column(String(64))
    entity: Mapped[str] = mapped_column(String(64))
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    detail: Mapped[str] = mapped_column(String(512), default="")
    before_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    after_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_source: Mapped[str | None] = mapped_column(String(128), nullable=True)
    trace_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now)
