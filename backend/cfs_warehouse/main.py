from datetime import datetime
import json
import logging
import secrets
from contextvars import ContextVar
from contextlib import nullcontext
from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from .db import SessionLocal
from . import config, container_numbers, layout, location_codes, models, plan_state, schemas
from .errors import CfsError, ConflictError, GuardError, NotFoundError, is_error

logger = logging.getLogger(__name__)

app = FastAPI(title="CFS Warehouse")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)
request_source_ctx: ContextVar[str | None] = ContextVar("request_source", default=None)


@app.middleware("http")
async def audit_trace_middleware(request: Request, call_next):
    trace_id = request.headers.get("X-Trace-Id") or secrets.token_hex(8)
    request_source = request.headers.get("X-Request-Source")
    if not request_source:
        request_source = request.client.host if request.client else "unknown"
    trace_id_ctx.set(trace_id)
    request_source_ctx.set(request_source)
    response = await call_next(request)
    response.headers["X-Trace-Id"] = trace_id
    return response


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def tx(db: Session):
    # SQLAlchemy 2.0 can auto-begin a transaction on reads; avoid nested begin() errors.
    return db.begin() if not db.in_transaction() else nullcontext()


def error_response(error: CfsError) -> HTTPException:
    return HTTPException(error.status_code, error.to_dict())


def unwrap(result):
    """Raise the HTTP form of a core error, pass any other value through."""
    if is_error(result):
        raise error_response(result)
    return result


def get_or_404(db: Session, model, obj_id: int, label: str):
    obj = db.get(model, obj_id)
    if not obj:
        raise error_response(NotFoundError(f"{label} {obj_id} not found"))
    return obj


def add_operation_log(
    db: Session,
    module: str,
    action: str,
    entity: str,
    entity_id: int | None,
    detail: str = "",
    before_value: dict | None = None,
    after_value: dict | None = None,
):
    # Keep business APIs available even if audit log storage is temporarily broken.
    try:
        with SessionLocal() as log_db:
            log_db.add(
                models.OperationLog(
                    module=module,
                    action=action,
                    entity=entity,
                    entity_id=entity_id,
                    detail=detail,
                    before_value=json.dumps(before_value, ensure_ascii=False) if before_value is not None else None,
                    after_value=json.dumps(after_value, ensure_ascii=False) if after_value is not None else None,
                    request_source=request_source_ctx.get(),
                    trace_id=trace_id_ctx.get(),
                )
            )
            log_db.commit()
    except Exception:
        logger.warning("audit log write failed for %s.%s id=%s", module, action, entity_id, exc_info=True)


@app.on_event("startup")
def on_startup():
    config.configure_logging()
    with SessionLocal() as db:
        try:
            db.execute(select(models.Zone.id).limit(1))
        except OperationalError as exc:
            raise RuntimeError("database schema is missing, run: alembic upgrade head") from exc
    logger.info("CFS warehouse API ready")


@app.get("/health")
def health():
    return {"status": "ok"}


# Container numbers


@app.post("/container-numbers/validate", response_model=list[schemas.ContainerNumberResult])
def validate_container_numbers(payload: schemas.ContainerNumbersCheck):
    results = []
    for raw, outcome in zip(payload.numbers, container_numbers.validate_many(payload.numbers)):
        if is_error(outcome):
            results.append(schemas.ContainerNumberResult(input=raw, valid=False, error=outcome.to_dict()))
        else:
            results.append(
                schemas.ContainerNumberResult(
                    input=raw,
                    valid=True,
                    normalized=outcome,
                    display=container_numbers.format_display(outcome),
                )
            )
    return results


# Zones


@app.get("/zones", response_model=list[schemas.ZoneOut])
def list_zones(status: str | None = Query(default=None), db: Session = Depends(get_db)):
    stmt = select(models.Zone).order_by(models.Zone.code)
    if status and status != "all":
        stmt = stmt.where(models.Zone.status == status)
    return db.scalars(stmt).all()


@app.post("/zones", response_model=schemas.ZoneOut)
def create_zone(payload: schemas.ZoneCreate, db: Session = Depends(get_db)):
    zone = models.Zone(
        code=payload.code,
        name=payload.name,
        description=payload.description,
        type=payload.type,
        status=payload.status,
    )
    db.add(zone)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise error_response(ConflictError(f"zone code {payload.code} already exists", [payload.code]))
    db.refresh(zone)
    add_operation_log(db, "zones", "create", "zone", zone.id, f"code={zone.code}")
    return zone


@app.get("/zones/{zone_id}", response_model=schemas.ZoneOut)
def get_zone(zone_id: int, db: Session = Depends(get_db)):
    return get_or_404(db, models.Zone, zone_id, "zone")


@app.put("/zones/{zone_id}", response_model=schemas.ZoneOut)
def update_zone(zone_id: int, payload: schemas.ZoneUpdate, db: Session = Depends(get_db)):
    zone = get_or_404(db, models.Zone, zone_id, "zone")
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(400, "nothing to update")
    for key, value in changes.items():
        setattr(zone, key, value)
    db.commit()
    db.refresh(zone)
    add_operation_log(db, "zones", "update", "zone", zone.id, f"code={zone.code}", after_value=changes)
    return zone


@app.patch("/zones/{zone_id}/status", response_model=schemas.ZoneOut)
def update_zone_status(zone_id: int, payload: schemas.ZoneStatusUpdate, db: Session = Depends(get_db)):
    zone = get_or_404(db, models.Zone, zone_id, "zone")
    before = zone.status
    zone.status = payload.status
    db.commit()
    db.refresh(zone)
    add_operation_log(
        db, "zones", "status", "zone", zone.id, f"code={zone.code}",
        before_value={"status": before}, after_value={"status": zone.status},
    )
    return zone


@app.delete("/zones/{zone_id}")
def delete_zone(zone_id: int, db: Session = Depends(get_db)):
    zone = get_or_404(db, models.Zone, zone_id, "zone")
    has_locations = db.scalar(select(models.Location.id).where(models.Location.zone_id == zone_id).limit(1))
    if has_locations:
        raise HTTPException(400, "cannot delete zone with existing locations")
    add_operation_log(db, "zones", "delete", "zone", zone.id, f"code={zone.code}")
    db.delete(zone)
    db.commit()
    return {"status": "deleted"}


# Locations


def _zone_location_codes(db: Session, zone_id: int, exclude_id: int | None = None) -> set[str]:
    stmt = select(models.Location.location_code).where(models.Location.zone_id == zone_id)
    if exclude_id is not None:
        stmt = stmt.where(models.Location.id != exclude_id)
    return set(db.scalars(stmt).all())


@app.get("/zones/{zone_id}/locations", response_model=list[schemas.LocationOut])
def list_zone_locations(zone_id: int, status: str | None = Query(default=None), db: Session = Depends(get_db)):
    get_or_404(db, models.Zone, zone_id, "zone")
    stmt = select(models.Location).where(models.Location.zone_id == zone_id)
    if status and status != "all":
        stmt = stmt.where(models.Location.status == status)
    return sorted(db.scalars(stmt).all(), key=lambda loc: loc.display_code)


@app.post("/locations/preview", response_model=schemas.CodesOut)
def preview_location(payload: schemas.LocationPreview, db: Session = Depends(get_db)):
    zone = get_or_404(db, models.Zone, payload.zone_id, "zone")
    codes = location_codes.preview_codes(zone.code, zone.type, payload.model_dump())
    if codes is None:
        return schemas.CodesOut()
    return schemas.CodesOut(**vars(codes))


@app.post("/locations", response_model=schemas.LocationOut)
def create_location(payload: schemas.LocationCreate, db: Session = Depends(get_db)):
    zone = get_or_404(db, models.Zone, payload.zone_id, "zone")
    address = unwrap(location_codes.parse_addressing(zone.type, payload.model_dump()))
    loc = models.Location(zone_id=zone.id, zone_type=zone.type, status=payload.status)
    loc.set_address(zone.code, address)
    if loc.location_code in _zone_location_codes(db, zone.id):
        raise error_response(
            ConflictError(f"location {loc.location_code} already exists in zone {zone.code}", [loc.location_code])
        )
    db.add(loc)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise error_response(ConflictError(f"location {loc.location_code} already exists in zone {zone.code}"))
    db.refresh(loc)
    add_operation_log(db, "locations", "create", "location", loc.id, f"code={loc.absolute_code}")
    return loc


@app.get("/locations/{location_id}", response_model=schemas.LocationOut)
def get_location(location_id: int, db: Session = Depends(get_db)):
    return get_or_404(db, models.Location, location_id, "location")


@app.put("/locations/{location_id}", response_model=schemas.LocationOut)
def update_location(location_id: int, payload: schemas.LocationUpdate, db: Session = Depends(get_db)):
    loc = get_or_404(db, models.Location, location_id, "location")
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise HTTPException(400, "nothing to update")
    addressing = {k: v for k, v in changes.items() if k != "status"}
    before = loc.absolute_code
    if addressing:
        if loc.status != "inactive":
            raise error_response(
                GuardError(f"{loc.status} location {before} cannot be re-addressed, deactivate it first")
            )
        current = {
            "rbs_row": loc.rbs_row,
            "rbs_bay": loc.rbs_bay,
            "rbs_slot": loc.rbs_slot,
            "custom_label": loc.custom_label,
        }
        address = unwrap(location_codes.parse_addressing(loc.zone_type, {**current, **addressing}))
        new_code = location_codes.codes_for(loc.zone.code, address).location_code
        if new_code in _zone_location_codes(db, loc.zone_id, exclude_id=loc.id):
            raise error_response(ConflictError(f"location {new_code} already exists in zone {loc.zone.code}", [new_code]))
        loc.set_address(loc.zone.code, address)
    if "status" in changes:
        loc.status = changes["status"]
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise error_response(ConflictError("location code already exists in this zone"))
    db.refresh(loc)
    add_operation_log(
        db, "locations", "update", "location", loc.id, f"code={loc.absolute_code}",
        before_value={"absolute_code": before}, after_value={"absolute_code": loc.absolute_code, "status": loc.status},
    )
    return loc


@app.patch("/locations/{location_id}/status", response_model=schemas.LocationOut)
def update_location_status(location_id: int, payload: schemas.LocationStatusUpdate, db: Session = Depends(get_db)):
    loc = get_or_404(db, models.Location, location_id, "location")
    before = loc.status
    loc.status = payload.status
    db.commit()
    db.refresh(loc)
    add_operation_log(
        db, "locations", "status", "location", loc.id, f"code={loc.absolute_code}",
        before_value={"status": before}, after_value={"status": loc.status},
    )
    return loc


@app.delete("/locations/{location_id}")
def delete_location(location_id: int, db: Session = Depends(get_db)):
    loc = get_or_404(db, models.Location, location_id, "location")
    add_operation_log(db, "locations", "delete", "location", loc.id, f"code={loc.absolute_code}")
    db.delete(loc)
    db.commit()
    return {"status": "deleted"}


# Layouts


def _rbs_zone(db: Session, zone_id: int) -> models.Zone:
    zone = get_or_404(db, models.Zone, zone_id, "zone")
    if zone.type != location_codes.ZONE_TYPE_RBS:
        raise HTTPException(400, "layout creation is only supported for RBS zones")
    return zone


@app.post("/zones/{zone_id}/locations/layout/preview", response_model=schemas.LayoutPreviewOut)
def preview_layout(zone_id: int, payload: schemas.LayoutRequest, db: Session = Depends(get_db)):
    zone = _rbs_zone(db, zone_id)
    result = unwrap(layout.preview(zone.code, payload.wire_rows()))
    return schemas.LayoutPreviewOut(codes=result.codes, total=result.total)


@app.post("/zones/{zone_id}/locations/layout", response_model=schemas.LayoutCreated)
def create_layout(zone_id: int, payload: schemas.LayoutRequest, db: Session = Depends(get_db)):
    zone = _rbs_zone(db, zone_id)
    requests = unwrap(layout.expand(zone.code, payload.wire_rows()))
    conflicts = layout.find_conflicts(requests, _zone_location_codes(db, zone.id))
    if conflicts:
        raise error_response(ConflictError(f"{len(conflicts)} generated locations already exist", conflicts))

    zone_code = zone.code
    try:
        with tx(db):
            for req in requests:
                loc = models.Location(zone_id=zone.id, zone_type=zone.type, status=req.status)
                loc.set_address(zone_code, location_codes.RbsAddress(req.rbs_row, req.rbs_bay, req.rbs_slot))
                db.add(loc)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise error_response(ConflictError("layout collides with locations created meanwhile"))
    # reload the new rows in one query
    new_codes = {req.location_code for req in requests}
    zone_locations = db.scalars(
        select(models.Location).where(models.Location.zone_id == zone_id).order_by(models.Location.id)
    ).all()
    created = [loc for loc in zone_locations if loc.location_code in new_codes]
    logger.info("created %d locations in zone %s", len(created), zone_code)
    add_operation_log(db, "locations", "layout", "zone", zone_id, f"code={zone_code},created={len(created)}")
    assignments = [
        schemas.LayoutAssignment(
            row_index=req.row_index,
            bay_index=req.bay_index,
            slot_index=req.slot_index,
            assigned_code=req.location_code,
        )
        for req in requests
    ]
    return schemas.LayoutCreated(
        created=[schemas.LocationOut.model_validate(loc) for loc in created],
        assignments=assignments,
    )


# Plans


def plan_out(plan: models.Plan) -> schemas.PlanOut:
    out = schemas.PlanOut.model_validate(plan)
    out.actions = schemas.PlanActionsOut(**plan_state.plan_actions(plan.container_statuses, plan.kind).to_dict())
    return out


@app.get("/plans", response_model=list[schemas.PlanOut])
def list_plans(
    kind: str | None = Query(default=None),
    status: str | None = Query(default=None),
    db: Session = Depends(get_db),
):
    stmt = select(models.Plan).order_by(models.Plan.id.desc())
    if kind:
        stmt = stmt.where(models.Plan.kind == kind)
    if status:
        stmt = stmt.where(models.Plan.status == status)
    return [plan_out(plan) for plan in db.scalars(stmt).all()]


@app.post("/plans", response_model=schemas.PlanOut)
def create_plan(payload: schemas.PlanCreate, db: Session = Depends(get_db)):
    outcomes = container_numbers.validate_many(payload.container_refs)
    errors = [{"input": raw, **res.to_dict()} for raw, res in zip(payload.container_refs, outcomes) if is_error(res)]
    if errors:
        raise HTTPException(400, {"type": "InvalidContainerNumbers", "message": "invalid container numbers", "errors": errors})
    if len(set(outcomes)) != len(outcomes):
        raise HTTPException(400, "a container can only appear once in a plan")

    plan = models.Plan(
        code=payload.code.strip(),
        kind=payload.kind,
        status=payload.status,
        created_by=payload.created_by,
        containers=[models.PlanContainer(container_ref=ref, status=plan_state.WAITING) for ref in outcomes],
    )
    db.add(plan)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise error_response(ConflictError(f"plan code {payload.code} already exists", [payload.code]))
    db.refresh(plan)
    add_operation_log(db, "plans", "create", "plan", plan.id, f"code={plan.code},containers={len(outcomes)}")
    return plan_out(plan)


@app.get("/plans/{plan_id}", response_model=schemas.PlanOut)
def get_plan(plan_id: int, db: Session = Depends(get_db)):
    return plan_out(get_or_404(db, models.Plan, plan_id, "plan"))


def _set_plan_status(db: Session, plan: models.Plan, next_status: str, action: str) -> schemas.PlanOut:
    before = plan.status
    plan.status = next_status
    if next_status == plan_state.PLAN_IN_PROGRESS:
        plan.execution_start = datetime.now()
        plan.execution_end = None
    elif next_status == plan_state.PLAN_DONE:
        plan.execution_end = datetime.now()
    db.commit()
    db.refresh(plan)
    logger.info("plan %s %s: %s -> %s", plan.code, action, before, next_status)
    add_operation_log(
        db, "plans", action, "plan", plan.id, f"code={plan.code}",
        before_value={"status": before}, after_value={"status": next_status},
    )
    return plan_out(plan)


@app.post("/plans/{plan_id}/start", response_model=schemas.PlanOut)
def start_plan(plan_id: int, db: Session = Depends(get_db)):
    plan = get_or_404(db, models.Plan, plan_id, "plan")
    next_status = unwrap(plan_state.start(plan.status))
    return _set_plan_status(db, plan, next_status, "start")


@app.post("/plans/{plan_id}/containers/{container_id}/status", response_model=schemas.PlanOut)
def update_plan_container_status(
    plan_id: int,
    container_id: int,
    payload: schemas.PlanContainerStatusUpdate,
    db: Session = Depends(get_db),
):
    plan = get_or_404(db, models.Plan, plan_id, "plan")
    container = db.get(models.PlanContainer, container_id)
    if not container or container.plan_id != plan.id:
        raise error_response(NotFoundError(f"container {container_id} not found on plan {plan.code}"))
    if plan.status != plan_state.PLAN_IN_PROGRESS:
        raise error_response(GuardError(f"containers can only be processed on an IN_PROGRESS plan, plan is {plan.status}"))

    before = container.status
    container.status = unwrap(plan_state.transition_container(plan.kind, container.status, payload.status))
    if container.status == plan_state.RECEIVED:
        container.received_type = payload.received_type
    if payload.notes is not None:
        container.notes = payload.notes
    container.last_action_at = datetime.now()
    db.commit()
    db.refresh(plan)
    add_operation_log(
        db, "plans", "container_status", "plan_container", container.id,
        f"plan={plan.code},container={container.container_ref}",
        before_value={"status": before}, after_value={"status": container.status},
    )
    return plan_out(plan)


def _plan_action(db: Session, plan_id: int, action: str) -> schemas.PlanOut:
    plan = get_or_404(db, models.Plan, plan_id, "plan")
    next_status = unwrap(plan_state.apply_action(action, plan.status, plan.container_statuses, plan.kind))
    return _set_plan_status(db, plan, next_status, action)


@app.post("/plans/{plan_id}/cancel", response_model=schemas.PlanOut)
def cancel_plan(plan_id: int, db: Session = Depends(get_db)):
    return _plan_action(db, plan_id, plan_state.ACTION_CANCEL)


@app.post("/plans/{plan_id}/mark-done", response_model=schemas.PlanOut)
def mark_plan_done(plan_id: int, db: Session = Depends(get_db)):
    return _plan_action(db, plan_id, plan_state.ACTION_MARK_DONE)


@app.post("/plans/{plan_id}/mark-pending", response_model=schemas.PlanOut)
def mark_plan_pending(plan_id: int, db: Session = Depends(get_db)):
    return _plan_action(db, plan_id, plan_state.ACTION_MARK_PENDING)


@app.get("/plans/{plan_id}/summary", response_model=schemas.ExecutionSummaryOut)
def plan_execution_summary(plan_id: int, db: Session = Depends(get_db)):
    plan = get_or_404(db, models.Plan, plan_id, "plan")
    if plan.kind != plan_state.PLAN_KIND_RECEIVING:
        raise HTTPException(400, "execution summary is only available for receiving plans")
    summary = plan_state.calculate_execution_summary(plan.containers)
    actions = plan_state.plan_actions(plan.container_statuses, plan.kind)
    return schemas.ExecutionSummaryOut(
        **summary.to_dict(),
        can_mark_done=actions.can_mark_done,
        can_mark_pending=actions.can_mark_pending,
    )


@app.get("/operation_logs", response_model=list[schemas.OperationLogOut])
def list_operation_logs(
    module: str | None = Query(default=None),
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    stmt = select(models.OperationLog).order_by(models.OperationLog.id.desc()).limit(limit)
    if module:
        stmt = stmt.where(models.OperationLog.module == module)
    return db.scalars(stmt).all()
