from httpx import AsyncClient

PUBLIC = "/api/public/applications"


def _form(**overrides):
    data = {
        "name": "Sara Malik",
        "email": "sara@example.com",
        "phone": "03334445556",
        "course": "UI/UX Design",
        "preferredStart": "2026-03-01",
    }
    data.update(overrides)
    return data


async def test_submit_public_form(client: AsyncClient) -> None:
    response = await client.post(PUBLIC, json=_form())
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["ok"] is True
    assert body["item"]["preferredStart"] == "2026-03-01"
    assert body["item"]["pendingSync"] is False
    assert body["item"]["status"] == "Pending"

    listed = (await client.get(PUBLIC)).json()
    assert listed["ok"] is True
    assert [i["name"] for i in listed["items"]] == ["Sara Malik"]
    assert listed["items"][0]["preferredStart"] == "2026-03-01"


async def test_public_submission_appears_in_admissions(client: AsyncClient) -> None:
    await client.post(PUBLIC, json=_form())
    admissions = (await client.get("/api/v1/admissions")).json()
    assert admissions["total"] == 1
    assert admissions["items"][0]["source"] == "public_applications"
    assert admissions["items"][0]["notes"] == "Preferred start: 2026-03-01"


async def test_public_form_validation(client: AsyncClient) -> None:
    response = await client.post(PUBLIC, json=_form(name=""))
    assert response.status_code == 422


async def test_offline_public_form_is_buffered(offline_client: AsyncClient) -> None:
    response = await offline_client.post(PUBLIC, json=_form())
    assert response.status_code == 202
    assert response.json()["item"]["pendingSync"] is True
    assert (await offline_client.get(PUBLIC)).json()["items"] == []
