from httpx import AsyncClient

from admitflow.api.v1.certificates import service
from admitflow.api.v1.certificates.schemas import CertificateCreate
from admitflow.db.remote import RemoteStore

CERTIFICATES = "/api/certificates"


async def _request(client: AsyncClient, **overrides) -> dict:
    body = {
        "studentId": "STU-AYE26000001",
        "certificateType": "Course Completion",
        "requesterName": "Ayesha Khan",
        "requesterEmail": "ayesha@example.com",
        "metadata": {"grade": "A"},
    }
    body.update(overrides)
    response = await client.post(CERTIFICATES, json=body)
    assert response.status_code == 201, response.text
    return response.json()["item"]


async def _patch(client: AsyncClient, certificate_id: str, status: str, **extra):
    return await client.patch(f"{CERTIFICATES}/{certificate_id}", json={"status": status, **extra})


async def test_request_certificate(client: AsyncClient) -> None:
    item = await _request(client)
    assert item["id"].startswith("CERT-")
    assert item["status"] == "requested"
    assert item["pendingSync"] is False
    assert item["metadata"] == {"grade": "A"}
    assert [h["status"] for h in item["statusHistory"]] == ["requested"]

    fetched = await client.get(f"{CERTIFICATES}/{item['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["item"]["requesterName"] == "Ayesha Khan"


async def test_approval_stamps_and_history(client: AsyncClient) -> None:
    item = await _request(client)
    response = await _patch(client, item["id"], "approved", adminId="admin-7", note="Checked")
    assert response.status_code == 200, response.text
    approved = response.json()["item"]
    assert approved["status"] == "approved"
    assert approved["approvedBy"] == "admin-7"
    assert approved["approvedAt"] is not None
    assert [h["status"] for h in approved["statusHistory"]] == ["requested", "approved"]
    assert approved["statusHistory"][-1]["note"] == "Checked"

    backwards = await _patch(client, item["id"], "pending_approval")
    assert backwards.status_code == 409


async def test_flow_skips_forward_and_ends_at_delivered(client: AsyncClient) -> None:
    item = await _request(client)
    printing = (await _patch(client, item["id"], "printing")).json()["item"]
    assert printing["printingStartedAt"] is not None
    delivered = (await _patch(client, item["id"], "delivered")).json()["item"]
    assert delivered["deliveredAt"] is not None

    assert (await _patch(client, item["id"], "cancelled")).status_code == 409


async def test_cancelled_is_terminal(client: AsyncClient) -> None:
    item = await _request(client)
    cancelled = (await _patch(client, item["id"], "cancelled")).json()["item"]
    assert cancelled["cancelledAt"] is not None
    assert (await _patch(client, item["id"], "approved")).status_code == 409


async def test_list_filters(client: AsyncClient) -> None:
    first = await _request(client)
    await _request(client, studentId="STU-BIL26000002")
    await _patch(client, first["id"], "approved")

    everything = (await client.get(CERTIFICATES)).json()["items"]
    assert len(everything) == 2
    approved = (await client.get(CERTIFICATES, params={"status": "approved"})).json()["items"]
    assert [c["id"] for c in approved] == [first["id"]]
    mine = (await client.get(CERTIFICATES, params={"studentId": "STU-BIL26000002"})).json()["items"]
    assert len(mine) == 1


async def test_delete_certificate(client: AsyncClient) -> None:
    item = await _request(client)
    response = await client.delete(f"{CERTIFICATES}/{item['id']}")
    assert response.json() == {"ok": True, "removedId": item["id"]}
    assert (await client.get(f"{CERTIFICATES}/{item['id']}")).status_code == 404
    assert (await client.delete(f"{CERTIFICATES}/{item['id']}")).status_code == 404


async def test_offline_request_is_kept_locally(offline_client: AsyncClient) -> None:
    item = await _request(offline_client)
    assert item["pendingSync"] is True

    approved = (await _patch(offline_client, item["id"], "approved")).json()["item"]
    assert approved["pendingSync"] is True
    listed = (await offline_client.get(CERTIFICATES)).json()["items"]
    assert [c["status"] for c in listed] == ["approved"]
    assert (await offline_client.post(f"{CERTIFICATES}/sync")).json() == {"synced": 0, "failed": 0}


async def test_sync_writes_local_requests_through(remote_store, local_buffer) -> None:
    created = await service.create_certificate(
        RemoteStore(None),
        local_buffer,
        CertificateCreate(studentId="STU-AYE26000001", certificateType="Transcript"),
    )
    assert created.item.pending_sync is True

    assert await service.sync_certificates(remote_store, local_buffer) == {"synced": 1, "failed": 0}

    rows = await remote_store.fetch_rows("certificates")
    assert [r["id"] for r in rows] == [created.item.id]
    assert await local_buffer.list(service.ENTITY_CERTIFICATE) == []
    fetched = await service.get_certificate(remote_store, local_buffer, created.item.id)
    assert fetched.pending_sync is False
    assert fetched.certificate_type == "Transcript"
