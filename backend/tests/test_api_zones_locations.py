from sqlalchemy import event, select

from cfs_warehouse import models


def test_zone_crud_and_duplicate_code(client, rbs_zone):
    assert rbs_zone["code"] == "GE"
    assert rbs_zone["type"] == "RBS"

    dup = client.post("/zones", json={"code": "GE", "name": "Again"})
    assert dup.status_code == 409
    assert dup.json()["detail"]["codes"] == ["GE"]

    bad = client.post("/zones", json={"code": "GEN", "name": "Too long"})
    assert bad.status_code == 422

    updated = client.put(f"/zones/{rbs_zone['id']}", json={"name": "General cargo"})
    assert updated.status_code == 200
    assert updated.json()["name"] == "General cargo"

    off = client.patch(f"/zones/{rbs_zone['id']}/status", json={"status": "inactive"})
    assert off.json()["status"] == "inactive"
    assert client.get("/zones", params={"status": "active"}).json() == []
    assert len(client.get("/zones", params={"status": "all"}).json()) == 1

    assert client.get("/zones/999").status_code == 404


def test_zone_delete_guard(client, rbs_zone):
    loc = client.post("/locations", json={"zone_id": rbs_zone["id"], "rbs_row": "1", "rbs_bay": "1", "rbs_slot": "1"})
    assert loc.status_code == 200

    del_resp = client.delete(f"/zones/{rbs_zone['id']}")
    assert del_resp.status_code == 400
    assert "existing locations" in del_resp.json()["detail"]

    assert client.delete(f"/locations/{loc.json()['id']}").status_code == 200
    assert client.delete(f"/zones/{rbs_zone['id']}").status_code == 200


def test_create_rbs_location_normalizes_codes(client, rbs_zone):
    resp = client.post("/locations", json={"zone_id": rbs_zone["id"], "rbs_row": "r1", "rbs_bay": "2", "rbs_slot": "S3"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["location_code"] == "R01B02S03"
    assert body["absolute_code"] == "GER-R01B02S03"
    assert body["display_code"] == "GER-R01B02S03"
    assert body["zone_code"] == "GE"
    assert body["status"] == "inactive"

    dup = client.post("/locations", json={"zone_id": rbs_zone["id"], "rbs_row": "R01", "rbs_bay": "B02", "rbs_slot": "S03"})
    assert dup.status_code == 409
    assert dup.json()["detail"]["codes"] == ["R01B02S03"]


def test_create_location_field_errors(client, rbs_zone, custom_zone):
    resp = client.post("/locations", json={"zone_id": rbs_zone["id"], "rbs_row": "X1", "rbs_bay": "1", "rbs_slot": "1"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == {
        "type": "BadRbsFormatError",
        "message": "row must look like R01, got 'X1'",
        "field": "row",
    }

    missing = client.post("/locations", json={"zone_id": rbs_zone["id"], "rbs_row": "1"})
    assert missing.json()["detail"]["type"] == "MissingFieldError"
    assert missing.json()["detail"]["field"] == "bay"

    label = client.post("/locations", json={"zone_id": custom_zone["id"], "custom_label": "dock-1"})
    assert label.status_code == 400
    assert label.json()["detail"]["type"] == "BadLabelFormatError"

    assert client.post("/locations", json={"zone_id": 999, "custom_label": "X"}).status_code == 404


def test_custom_location_and_listing_order(client, custom_zone):
    for label in ("gate2", "Dock1", "annex"):
        assert client.post("/locations", json={"zone_id": custom_zone["id"], "custom_label": label}).status_code == 200
    listed = client.get(f"/zones/{custom_zone['id']}/locations").json()
    assert [loc["display_code"] for loc in listed] == ["DG-ANNEX", "DG-DOCK1", "DG-GATE2"]
    assert all(loc["rbs_row"] is None for loc in listed)


def test_preview_location(client, rbs_zone):
    partial = client.post("/locations/preview", json={"zone_id": rbs_zone["id"], "rbs_row": "1"})
    assert partial.status_code == 200
    assert partial.json() == {"location_code": None, "absolute_code": None, "display_code": None}

    full = client.post("/locations/preview", json={"zone_id": rbs_zone["id"], "rbs_row": "1", "rbs_bay": "1", "rbs_slot": "9"})
    assert full.json()["absolute_code"] == "GER-R01B01S09"


def test_readdressing_requires_inactive_location(client, rbs_zone):
    loc = client.post(
        "/locations", json={"zone_id": rbs_zone["id"], "rbs_row": "1", "rbs_bay": "1", "rbs_slot": "1"}
    ).json()
    client.post("/locations", json={"zone_id": rbs_zone["id"], "rbs_row": "1", "rbs_bay": "1", "rbs_slot": "2"})

    moved = client.put(f"/locations/{loc['id']}", json={"rbs_slot": "5"})
    assert moved.status_code == 200
    assert moved.json()["absolute_code"] == "GER-R01B01S05"

    clash = client.put(f"/locations/{loc['id']}", json={"rbs_slot": "2"})
    assert clash.status_code == 409

    same = client.put(f"/locations/{loc['id']}", json={"rbs_slot": "S05"})
    assert same.status_code == 200

    for status in ("active", "locked"):
        assert client.patch(f"/locations/{loc['id']}/status", json={"status": status}).status_code == 200
        refused = client.put(f"/locations/{loc['id']}", json={"rbs_slot": "7"})
        assert refused.status_code == 400
        assert refused.json()["detail"]["type"] == "GuardError"

    assert client.put(f"/locations/{loc['id']}", json={"status": "inactive"}).status_code == 200
    assert client.put(f"/locations/{loc['id']}", json={}).status_code == 400


def test_layout_preview_and_create(client_and_db, rbs_zone):
    client, session_factory = client_and_db
    rows = {"rows": [{"bays": [{"slotsCount": 2}, {"slotsCount": 1}]}, {"bays": [{"slotsCount": 3}]}]}

    preview = client.post(f"/zones/{rbs_zone['id']}/locations/layout/preview", json=rows)
    assert preview.status_code == 200
    assert preview.json()["total"] == 6
    assert preview.json()["codes"][:3] == ["GER-R01B01S01", "GER-R01B01S02", "GER-R01B02S01"]
    assert len(preview.json()["codes"]) == 5

    created = client.post(f"/zones/{rbs_zone['id']}/locations/layout", json=rows)
    assert created.status_code == 200
    body = created.json()
    assert len(body["created"]) == 6
    assert all(loc["status"] == "active" for loc in body["created"])
    assert body["assignments"][3] == {"row_index": 1, "bay_index": 0, "slot_index": 0, "assigned_code": "R02B01S01"}

    with session_factory() as db:
        codes = db.scalars(select(models.Location.location_code).where(models.Location.zone_id == rbs_zone["id"])).all()
    assert sorted(codes) == ["R01B01S01", "R01B01S02", "R01B02S01", "R02B01S01", "R02B01S02", "R02B01S03"]


def test_layout_response_is_loaded_without_a_query_per_location(client_and_db, rbs_zone):
    client, session_factory = client_and_db
    engine = session_factory.kw["bind"]
    location_selects = []

    def record(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT") and "FROM locations" in statement:
            location_selects.append(statement)

    event.listen(engine, "before_cursor_execute", record)
    try:
        resp = client.post(
            f"/zones/{rbs_zone['id']}/locations/layout",
            json={"rows": [{"bays": [{"slotsCount": 10}, {"slotsCount": 10}]}, {"bays": [{"slotsCount": 10}]}]},
        )
    finally:
        event.remove(engine, "before_cursor_execute", record)

    assert resp.status_code == 200
    created = resp.json()["created"]
    assert len(created) == 30
    assert created[0]["absolute_code"] == "GER-R01B01S01"
    assert created[-1]["absolute_code"] == "GER-R02B01S10"
    assert len(location_selects) <= 3


def test_layout_conflicts_create_nothing(client_and_db, rbs_zone):
    client, session_factory = client_and_db
    client.post("/locations", json={"zone_id": rbs_zone["id"], "rbs_row": "1", "rbs_bay": "1", "rbs_slot": "2"})

    resp = client.post(f"/zones/{rbs_zone['id']}/locations/layout", json={"rows": [{"bays": [{"slotsCount": 3}]}]})
    assert resp.status_code == 409
    assert resp.json()["detail"]["codes"] == ["GER-R01B01S02"]

    with session_factory() as db:
        count = len(db.scalars(select(models.Location.id)).all())
    assert count == 1


def test_layout_validation_and_zone_type(client, rbs_zone, custom_zone):
    empty = client.post(f"/zones/{rbs_zone['id']}/locations/layout", json={"rows": []})
    assert empty.status_code == 400
    assert empty.json()["detail"] == {"type": "LayoutValidationError", "message": "Add at least one row."}

    zero = client.post(f"/zones/{rbs_zone['id']}/locations/layout/preview", json={"rows": [{"bays": [{"slotsCount": 0}]}]})
    assert zero.status_code == 400

    custom = client.post(f"/zones/{custom_zone['id']}/locations/layout", json={"rows": [{"bays": [{"slotsCount": 1}]}]})
    assert custom.status_code == 400
    assert "RBS" in custom.json()["detail"]


def test_validate_container_numbers_endpoint(client):
    resp = client.post("/container-numbers/validate", json={"numbers": ["mscu 663987 0", "MSCU6639871", "nope"]})
    assert resp.status_code == 200
    ok, wrong_digit, bad_shape = resp.json()
    assert ok["valid"] and ok["normalized"] == "MSCU6639870" and ok["display"] == "MSCU663987-0"
    assert wrong_digit["error"]["type"] == "CheckDigitError"
    assert bad_shape["error"]["type"] == "FormatError"
    assert client.post("/container-numbers/validate", json={"numbers": []}).status_code == 422


def test_trace_id_reaches_operation_logs(client):
    resp = client.post(
        "/zones",
        json={"code": "A", "name": "Apron"},
        headers={"X-Trace-Id": "trace-zone-a", "X-Request-Source": "pytest"},
    )
    assert resp.headers["X-Trace-Id"] == "trace-zone-a"
    assert client.get("/health").headers["X-Trace-Id"]

    logs = client.get("/operation_logs", params={"module": "zones"}).json()
    assert logs[0]["action"] == "create"
    assert logs[0]["trace_id"] == "trace-zone-a"
    assert logs[0]["request_source"] == "pytest"
