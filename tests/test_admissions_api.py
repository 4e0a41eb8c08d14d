from httpx import AsyncClient

ADMISSIONS = "/api/v1/admissions"


def _application(**overrides):
    data = {
        "name": "Ayesha Khan",
        "email": "ayesha@example.com",
        "phone": "03001234567",
        "course": "Web Development",
        "campus": "Gulberg",
        "fee_total": 30000,
        "start_date": "2026-03-01",
    }
    data.update(overrides)
    return data


async def _submit(client: AsyncClient, **overrides) -> dict:
    response = await client.post(ADMISSIONS, json=_application(**overrides))
    assert response.status_code == 201, response.text
    return response.json()


async def test_submit_stores_application(client: AsyncClient) -> None:
    data = await _submit(client)
    assert data["outcome"] == "stored"
    assert data["strategy"] == "full"
    assert data["pending_sync"] is False
    assert data["voucher_ref"].startswith("VCH-")
    assert data["record"]["student"]["name"] == "Ayesha Khan"
    assert data["record"]["campus"] == "Gulberg"

    listing = (await client.get(ADMISSIONS)).json()
    assert listing["total"] == 1
    assert listing["items"][0]["id"] == data["record"]["id"]


async def test_submit_requires_name(client: AsyncClient) -> None:
    response = await client.post(ADMISSIONS, json=_application(name=""))
    assert response.status_code == 422


async def test_offline_submit_is_buffered(offline_client: AsyncClient) -> None:
    response = await offline_client.post(ADMISSIONS, json=_application())
    assert response.status_code == 202
    data = response.json()
    assert data["outcome"] == "buffered"
    assert data["pending_sync"] is True

    listing = (await offline_client.get(ADMISSIONS)).json()
    assert listing["total"] == 1
    assert listing["items"][0]["pending_sync"] is True
    assert listing["items"][0]["id"] == data["record"]["id"]


async def test_list_filters(client: AsyncClient) -> None:
    await _submit(client)
    await _submit(client, name="Bilal Ahmed", email="bilal@example.com", course="Data Science", campus="DHA")

    by_course = (await client.get(ADMISSIONS, params={"course": "Data Science"})).json()
    assert [a["student"]["name"] for a in by_course["items"]] == ["Bilal Ahmed"]
    by_search = (await client.get(ADMISSIONS, params={"search": "ayesha"})).json()
    assert by_search["total"] == 1
    by_status = (await client.get(ADMISSIONS, params={"status": "verified"})).json()
    assert by_status["total"] == 0


async def test_get_unknown_admission(client: AsyncClient) -> None:
    response = await client.get(f"{ADMISSIONS}/9999")
    assert response.status_code == 404


async def test_approve_twice_creates_one_student(client: AsyncClient) -> None:
    admission_id = (await _submit(client))["record"]["id"]

    first = await client.post(f"{ADMISSIONS}/{admission_id}/approve", json={"batch": "B-12"})
    assert first.status_code == 200, first.text
    promoted = first.json()
    assert promoted["student_created"] is True
    assert promoted["student_id"].startswith("STU-AYE")
    assert promoted["admission"]["status"] == "Verified"
    assert promoted["admission"]["batch"] == "B-12"

    second = await client.post(f"{ADMISSIONS}/{admission_id}/approve", json={})
    assert second.status_code == 200
    assert second.json()["student_created"] is False
    assert second.json()["student_id"] == promoted["student_id"]

    students = (await client.get("/api/v1/students")).json()
    assert students["total"] == 1
    student = students["items"][0]
    assert student["id"] == promoted["student_id"]
    assert student["admission_id"] == admission_id
    assert student["admission"]["batch"] == "B-12"


async def test_verified_admission_cannot_be_rejected(client: AsyncClient) -> None:
    admission_id = (await _submit(client))["record"]["id"]
    await client.post(f"{ADMISSIONS}/{admission_id}/approve", json={})

    response = await client.post(f"{ADMISSIONS}/{admission_id}/reject", json={"reason": "Late"})
    assert response.status_code == 409


async def test_reject_requires_reason(client: AsyncClient) -> None:
    admission_id = (await _submit(client))["record"]["id"]
    assert (await client.post(f"{ADMISSIONS}/{admission_id}/reject", json={})).status_code == 422

    response = await client.post(f"{ADMISSIONS}/{admission_id}/reject", json={"reason": "Incomplete documents"})
    assert response.status_code == 200
    assert response.json()["status"] == "Rejected"
    assert response.json()["rejected_reason"] == "Incomplete documents"

    approve = await client.post(f"{ADMISSIONS}/{admission_id}/approve", json={})
    assert approve.status_code == 409


async def test_cancelled_admission_is_terminal(client: AsyncClient) -> None:
    admission_id = (await _submit(client))["record"]["id"]
    cancelled = await client.post(f"{ADMISSIONS}/{admission_id}/cancel", json={"remarks": "Moved city"})
    assert cancelled.json()["status"] == "Cancelled"

    response = await client.post(f"{ADMISSIONS}/{admission_id}/suspend", json={})
    assert response.status_code == 409


async def test_transfer_and_mark_paid(client: AsyncClient) -> None:
    admission_id = (await _submit(client))["record"]["id"]

    assert (await client.post(f"{ADMISSIONS}/{admission_id}/transfer", json={})).status_code == 400
    moved = await client.post(f"{ADMISSIONS}/{admission_id}/transfer", json={"campus": "DHA"})
    assert moved.json()["campus"] == "DHA"

    paid = await client.post(f"{ADMISSIONS}/{admission_id}/mark-paid")
    assert paid.status_code == 200
    assert paid.json()["payment_status"] == "Paid"


async def test_delete_admission(client: AsyncClient) -> None:
    admission_id = (await _submit(client))["record"]["id"]
    assert (await client.delete(f"{ADMISSIONS}/{admission_id}")).status_code == 204
    assert (await client.get(f"{ADMISSIONS}/{admission_id}")).status_code == 404


async def test_sync_replays_offline_work(offline_client: AsyncClient) -> None:
    await offline_client.post(ADMISSIONS, json=_application())
    summary = (await offline_client.post(f"{ADMISSIONS}/sync")).json()
    assert summary == {"synced": 0, "failed": 1, "remaining": 1}
