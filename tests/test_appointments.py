"""Tests for appointment endpoints."""

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

# Tuesday 3 March 2026, 10:00 clinic time
SLOT = "2026-03-03T10:00:00-06:00"
NEXT_SLOT = "2026-03-04T10:00:00-06:00"


@pytest.fixture
def appointment_payload(patient_id, doctor_id) -> dict:
    """Sample booking payload."""
    return {
        "patient_id": str(patient_id),
        "doctor_id": str(doctor_id),
        "scheduled_at": SLOT,
        "reasons": ["CONSULTA_GENERAL", "CONTROL", "CONSULTA_GENERAL"],
        "is_first_visit": True,
        "notes": "Primera visita",
    }


async def book(client: AsyncClient, headers: dict, payload: dict) -> dict:
    response = await client.post("/api/v1/appointments/", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_requires_authentication(client: AsyncClient, appointment_payload: dict) -> None:
    response = await client.post("/api/v1/appointments/", json=appointment_payload)
    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_invalid_token(client: AsyncClient, appointment_payload: dict) -> None:
    response = await client.post(
        "/api/v1/appointments/",
        json=appointment_payload,
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_appointment(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    """Test booking an appointment."""
    data = await book(client, auth_headers, appointment_payload)

    assert data["status"] == "PROGRAMADA"
    assert data["reasons"] == ["CONSULTA_GENERAL", "CONTROL"]
    assert data["is_first_visit"] is True
    assert datetime.fromisoformat(data["scheduled_at"]) == datetime.fromisoformat(SLOT)
    assert datetime.fromisoformat(data["scheduled_at"]).utcoffset() == timedelta(0)


@pytest.mark.asyncio
async def test_create_requires_timezone(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    """Instants without an offset are malformed."""
    appointment_payload["scheduled_at"] = "2026-03-03T10:00:00"
    response = await client.post(
        "/api/v1/appointments/", json=appointment_payload, headers=auth_headers
    )
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_create_requires_reasons(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    appointment_payload["reasons"] = []
    response = await client.post(
        "/api/v1/appointments/", json=appointment_payload, headers=auth_headers
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_unknown_patient(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    appointment_payload["patient_id"] = "00000000-0000-4000-8000-000000000000"
    response = await client.post(
        "/api/v1/appointments/", json=appointment_payload, headers=auth_headers
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_outside_clinic_hours(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    appointment_payload["scheduled_at"] = "2026-03-03T16:00:00-06:00"
    response = await client.post(
        "/api/v1/appointments/", json=appointment_payload, headers=auth_headers
    )
    assert response.status_code == 422
    assert response.json()["error"] == "ScheduleRuleViolationException"


@pytest.mark.asyncio
async def test_create_conflict(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    """The same doctor and instant cannot be booked twice, whatever the offset."""
    await book(client, auth_headers, appointment_payload)

    appointment_payload["scheduled_at"] = "2026-03-03T16:00:00Z"
    response = await client.post(
        "/api/v1/appointments/", json=appointment_payload, headers=auth_headers
    )
    assert response.status_code == 409
    data = response.json()
    assert data["error"] == "SchedulingConflictException"
    assert data["details"]["doctor_id"] == appointment_payload["doctor_id"]


@pytest.mark.asyncio
async def test_get_appointment(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    """Test getting a specific appointment."""
    created = await book(client, auth_headers, appointment_payload)

    response = await client.get(f"/api/v1/appointments/{created['id']}", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["id"] == created["id"]


@pytest.mark.asyncio
async def test_get_missing_appointment(client: AsyncClient, auth_headers: dict) -> None:
    response = await client.get(
        "/api/v1/appointments/00000000-0000-4000-8000-000000000000", headers=auth_headers
    )
    assert response.status_code == 404
    assert response.json()["message"] == "Appointment not found"


@pytest.mark.asyncio
async def test_update_appointment_fields(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    created = await book(client, auth_headers, appointment_payload)

    response = await client.patch(
        f"/api/v1/appointments/{created['id']}",
        json={"notes": "Traer estudios", "scheduled_at": NEXT_SLOT},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["notes"] == "Traer estudios"
    assert data["status"] == "PROGRAMADA"
    assert datetime.fromisoformat(data["scheduled_at"]) == datetime.fromisoformat(NEXT_SLOT)


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["is_first_visit", "reasons"])
async def test_update_rejects_explicit_null(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
    field: str,
) -> None:
    """Required columns can be replaced but not cleared."""
    created = await book(client, auth_headers, appointment_payload)

    response = await client.patch(
        f"/api/v1/appointments/{created['id']}",
        json={field: None},
        headers=auth_headers,
    )
    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"

    unchanged = await client.get(f"/api/v1/appointments/{created['id']}", headers=auth_headers)
    assert unchanged.json()["is_first_visit"] is True
    assert unchanged.json()["reasons"] == ["CONSULTA_GENERAL", "CONTROL"]


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["status", "new_status", "estado_cita"])
async def test_update_rejects_status(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
    field: str,
) -> None:
    """Status can only change through the status endpoint."""
    created = await book(client, auth_headers, appointment_payload)

    response = await client.patch(
        f"/api/v1/appointments/{created['id']}",
        json={"notes": "x", field: "CANCELADA"},
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert response.json()["error"] == "StatusChangeNotAllowedException"

    unchanged = await client.get(f"/api/v1/appointments/{created['id']}", headers=auth_headers)
    assert unchanged.json()["status"] == "PROGRAMADA"
    assert unchanged.json()["notes"] == "Primera visita"


@pytest.mark.asyncio
async def test_update_conflict(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    await book(client, auth_headers, appointment_payload)
    appointment_payload["scheduled_at"] = NEXT_SLOT
    second = await book(client, auth_headers, appointment_payload)

    response = await client.patch(
        f"/api/v1/appointments/{second['id']}",
        json={"scheduled_at": SLOT},
        headers=auth_headers,
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_change_status(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
    staff_id,
) -> None:
    created = await book(client, auth_headers, appointment_payload)

    response = await client.patch(
        f"/api/v1/appointments/{created['id']}/status",
        json={"new_status": "CONFIRMADA", "notes": "Confirmó por teléfono"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "CONFIRMADA"
    assert data["notes"] == "Primera visita | [02/03/2026 09:00] Confirmó por teléfono"
    assert data["_meta"]["previous_status"] == "PROGRAMADA"
    assert data["_meta"]["new_status"] == "CONFIRMADA"
    assert data["_meta"]["changed_by"] == str(staff_id)
    assert data["_meta"]["audit_trail_created"] is True
    assert data["_meta"]["warnings"] == []


@pytest.mark.asyncio
async def test_change_status_denied(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    created = await book(client, auth_headers, appointment_payload)

    response = await client.patch(
        f"/api/v1/appointments/{created['id']}/status",
        json={"new_status": "COMPLETADA"},
        headers=auth_headers,
    )
    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "InvalidTransitionException"
    assert data["details"] == {
        "current_status": "PROGRAMADA",
        "requested_status": "COMPLETADA",
        "allowed": ["CONFIRMADA", "PRESENTE", "CANCELADA", "REAGENDADA", "NO_ASISTIO"],
    }


@pytest.mark.asyncio
async def test_change_status_unknown_code(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    created = await book(client, auth_headers, appointment_payload)

    response = await client.patch(
        f"/api/v1/appointments/{created['id']}/status",
        json={"new_status": "EN_ESPERA"},
        headers=auth_headers,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"new_status": "REAGENDADA"},
        {"new_status": "CONFIRMADA", "new_scheduled_at": NEXT_SLOT},
        {"new_status": "CANCELADA"},
        {"new_status": "CANCELADA", "reason": "   "},
        {},
    ],
    ids=["reschedule-without-time", "time-without-reschedule", "cancel-without-reason",
         "cancel-blank-reason", "empty"],
)
async def test_change_status_malformed(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
    payload: dict,
) -> None:
    created = await book(client, auth_headers, appointment_payload)

    response = await client.patch(
        f"/api/v1/appointments/{created['id']}/status",
        json=payload,
        headers=auth_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_reschedule_and_history(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
    clock,
) -> None:
    created = await book(client, auth_headers, appointment_payload)
    base = f"/api/v1/appointments/{created['id']}"

    response = await client.patch(
        f"{base}/status",
        json={"new_status": "REAGENDADA", "new_scheduled_at": NEXT_SLOT, "reason": "Viaje"},
        headers=auth_headers,
    )
    assert response.status_code == 200
    assert datetime.fromisoformat(response.json()["scheduled_at"]) == datetime.fromisoformat(
        NEXT_SLOT
    )

    clock.advance(minutes=10)
    response = await client.patch(
        f"{base}/status", json={"new_status": "CONFIRMADA"}, headers=auth_headers
    )
    assert response.status_code == 200

    response = await client.get(f"{base}/history", headers=auth_headers)
    assert response.status_code == 200
    data = response.json()

    summary = data["summary"]
    assert summary["current_status"] == "CONFIRMADA"
    assert summary["patient_name"] == "María López"
    assert summary["total_changes"] == 2
    assert summary["scheduled_at_local"] == "04/03/2026 10:00"

    items = data["items"]
    assert [(i["previous_status"], i["new_status"]) for i in items] == [
        ("REAGENDADA", "CONFIRMADA"),
        ("PROGRAMADA", "REAGENDADA"),
    ]
    assert items[1]["reason_note"] == "Viaje"
    assert items[0]["reason_note"] == "Status change: REAGENDADA -> CONFIRMADA"
    assert datetime.fromisoformat(items[1]["new_scheduled_at"]) == datetime.fromisoformat(
        NEXT_SLOT
    )


@pytest.mark.asyncio
async def test_history_missing_appointment(client: AsyncClient, auth_headers: dict) -> None:
    response = await client.get(
        "/api/v1/appointments/00000000-0000-4000-8000-000000000000/history",
        headers=auth_headers,
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_check_in_window(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
    clock,
) -> None:
    created = await book(client, auth_headers, appointment_payload)
    url = f"/api/v1/appointments/{created['id']}/check-in"

    data = (await client.get(url, headers=auth_headers)).json()
    assert data["state"] == "TOO_EARLY"
    assert data["minutes_until_open"] == 24 * 60 + 30
    assert data["is_today"] is False
    assert "PRESENTE" not in data["available_actions"]

    clock.move_to(datetime.fromisoformat(SLOT) - timedelta(minutes=10))
    data = (await client.get(url, headers=auth_headers)).json()
    assert data["state"] == "OPEN"
    assert data["is_today"] is True
    assert "PRESENTE" in data["available_actions"]
    assert "NO_ASISTIO" not in data["available_actions"]
    assert "REAGENDADA" not in data["available_actions"]

    clock.move_to(datetime.fromisoformat(SLOT) + timedelta(minutes=16))
    data = (await client.get(url, headers=auth_headers)).json()
    assert data["state"] == "EXPIRED"
    assert data["minutes_since_close"] == 1
    assert data["available_actions"] == ["REAGENDADA", "NO_ASISTIO"]


@pytest.mark.asyncio
async def test_check_in_outside_window_is_rejected(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    created = await book(client, auth_headers, appointment_payload)

    response = await client.patch(
        f"/api/v1/appointments/{created['id']}/status",
        json={"new_status": "PRESENTE"},
        headers=auth_headers,
    )
    assert response.status_code == 422
    assert response.json()["details"]["state"] == "TOO_EARLY"


@pytest.mark.asyncio
async def test_agenda(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
    other_doctor_id,
) -> None:
    await book(client, auth_headers, appointment_payload)
    appointment_payload["scheduled_at"] = "2026-03-03T09:00:00-06:00"
    appointment_payload["doctor_id"] = str(other_doctor_id)
    await book(client, auth_headers, appointment_payload)
    appointment_payload["scheduled_at"] = NEXT_SLOT
    await book(client, auth_headers, appointment_payload)

    response = await client.get(
        "/api/v1/appointments/agenda", params={"day": "2026-03-03"}, headers=auth_headers
    )
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    times = [datetime.fromisoformat(item["scheduled_at"]) for item in data["items"]]
    assert times == sorted(times)

    response = await client.get(
        "/api/v1/appointments/agenda",
        params={"day": "2026-03-03", "doctor_id": str(other_doctor_id)},
        headers=auth_headers,
    )
    assert response.json()["total"] == 1


@pytest.mark.asyncio
async def test_no_show_before_appointment_is_rejected(
    client: AsyncClient,
    auth_headers: dict,
    appointment_payload: dict,
) -> None:
    created = await book(client, auth_headers, appointment_payload)

    response = await client.patch(
        f"/api/v1/appointments/{created['id']}/status",
        json={"new_status": "NO_ASISTIO"},
        headers=auth_headers,
    )
    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "ActionWindowException"
    assert data["details"]["minutes_remaining"] == 25 * 60 + 15

    history = await client.get(
        f"/api/v1/appointments/{created['id']}/history", headers=auth_headers
    )
    assert history.json()["summary"]["total_changes"] == 0
