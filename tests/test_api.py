import pytest


def auth(user_id):
    return {"Authorization": f"Bearer {user_id}"}


@pytest.fixture
def alice_id(client):
    res = client.post("/v1/users", json={"name": "Alice", "email": "alice@example.com"})
    assert res.status_code == 201
    return res.json()["id"]


@pytest.fixture
def bob_id(client):
    return client.post("/v1/users", json={"name": "Bob", "email": "bob@example.com"}).json()["id"]


@pytest.fixture
def board_id(client, alice_id):
    res = client.post("/v1/boards", json={"title": "Trip Planning"}, headers=auth(alice_id))
    assert res.status_code == 201
    return res.json()["id"]


def test_create_board(client, alice_id):
    res = client.post(
        "/v1/boards",
        json={"title": "Trip Planning", "backgroundURL": "https://img/bg.png"},
        headers=auth(alice_id),
    )
    body = res.json()
    assert body["title"] == "Trip Planning"
    assert body["backgroundURL"] == "https://img/bg.png"
    assert body["members"] == [{"user": alice_id, "name": "Alice", "role": "admin"}]
    assert [a["text"] for a in body["activity"]] == ["Alice created this board"]
    boards = client.get("/v1/boards", headers=auth(alice_id)).json()
    assert [b["id"] for b in boards] == [body["id"]]


def test_me(client, alice_id):
    body = client.get("/v1/users/me", headers=auth(alice_id)).json()
    assert body["name"] == "Alice"
    assert body["avatar"].startswith("https://www.gravatar.com/avatar/")


def test_duplicate_registration(client, alice_id):
    res = client.post("/v1/users", json={"name": "Alice", "email": "alice@example.com"})
    assert res.status_code == 400
    assert res.json()["error"]["fields"] == ["email"]


def test_missing_token(client):
    assert client.get("/v1/boards").status_code == 401


def test_unknown_board(client, alice_id):
    res = client.get("/v1/boards/missing", headers=auth(alice_id))
    assert res.status_code == 404
    assert res.json()["error"]["kind"] == "not_found"


def test_validation_error(client, alice_id):
    res = client.post("/v1/boards", json={"title": ""}, headers=auth(alice_id))
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "validation_error"


def test_outsider_cannot_rename(client, board_id, bob_id):
    res = client.patch(f"/v1/boards/{board_id}", json={"title": "x"}, headers=auth(bob_id))
    assert res.status_code == 403
    assert res.json()["error"]["kind"] == "unauthorized"
    assert client.get(f"/v1/boards/{board_id}", headers=auth(bob_id)).json()["title"] == "Trip Planning"


def test_member_flow(client, board_id, alice_id, bob_id):
    res = client.put(f"/v1/boards/{board_id}/members/{bob_id}", headers=auth(alice_id))
    assert res.status_code == 200
    assert [m["role"] for m in res.json()["members"]] == ["admin", "normal"]
    again = client.put(f"/v1/boards/{board_id}/members/{bob_id}", headers=auth(alice_id))
    assert again.status_code == 400
    res = client.patch(f"/v1/boards/{board_id}", json={"title": "Holiday"}, headers=auth(bob_id))
    assert res.json()["activity"][0]["text"] == "Bob renamed this board (from 'Trip Planning')"


def test_list_and_card_flow(client, board_id, alice_id):
    h = auth(alice_id)
    todo = client.post(f"/v1/boards/{board_id}/lists", json={"title": "Todo"}, headers=h).json()
    doing = client.post(f"/v1/boards/{board_id}/lists", json={"title": "Doing"}, headers=h).json()
    c1 = client.post(
        f"/v1/boards/{board_id}/lists/{todo['id']}/cards", json={"title": "Book flights"}, headers=h
    ).json()
    c2 = client.post(
        f"/v1/boards/{board_id}/lists/{todo['id']}/cards", json={"title": "Pack"}, headers=h
    ).json()

    res = client.post(
        f"/v1/boards/{board_id}/cards/{c1['id']}:move",
        json={"fromId": todo["id"], "toId": doing["id"], "toIndex": 0},
        headers=h,
    )
    assert res.status_code == 200
    body = res.json()
    assert body["cardId"] == c1["id"]
    assert body["from"]["cards"] == [c2["id"]]
    assert body["to"]["cards"] == [c1["id"]]

    res = client.post(f"/v1/boards/{board_id}/lists/{doing['id']}:move", json={"toIndex": 0}, headers=h)
    assert res.json()["lists"] == [doing["id"], todo["id"]]

    res = client.post(f"/v1/boards/{board_id}/lists/{todo['id']}:archive?archive=true", headers=h)
    assert res.json()["archived"] is True

    cards = client.get(f"/v1/boards/{board_id}/lists/{doing['id']}/cards", headers=h).json()
    assert [c["title"] for c in cards] == ["Book flights"]

    res = client.delete(f"/v1/boards/{board_id}/lists/{todo['id']}/cards/{c2['id']}", headers=h)
    assert res.json() == {"cardId": c2["id"]}
    assert client.get(f"/v1/boards/{board_id}/cards/{c2['id']}", headers=h).status_code == 404

    activity = client.get(f"/v1/boards/{board_id}/activity?limit=3", headers=h).json()
    assert activity["limit"] == 3
    assert activity["total"] == 9
    assert [a["text"] for a in activity["activity"]] == [
        "Alice deleted 'Pack' from 'Todo'",
        "Alice archived list 'Todo'",
        "Alice moved list 'Doing' to index 0",
    ]


def test_reads_are_scoped_to_the_board_in_the_path(client, board_id, alice_id):
    h = auth(alice_id)
    other_id = client.post("/v1/boards", json={"title": "Other"}, headers=h).json()["id"]
    todo = client.post(f"/v1/boards/{board_id}/lists", json={"title": "Todo"}, headers=h).json()
    card = client.post(
        f"/v1/boards/{board_id}/lists/{todo['id']}/cards", json={"title": "Pack"}, headers=h
    ).json()

    assert client.get(f"/v1/boards/{board_id}/lists/{todo['id']}", headers=h).status_code == 200
    assert client.get(f"/v1/boards/{board_id}/cards/{card['id']}", headers=h).status_code == 200
    for url in (
        f"/v1/boards/{other_id}/lists/{todo['id']}",
        f"/v1/boards/{other_id}/lists/{todo['id']}/cards",
        f"/v1/boards/{other_id}/cards/{card['id']}",
    ):
        res = client.get(url, headers=h)
        assert res.status_code == 404
        assert res.json()["error"]["kind"] == "not_found"


def test_card_edit_and_members(client, board_id, alice_id):
    h = auth(alice_id)
    todo = client.post(f"/v1/boards/{board_id}/lists", json={"title": "Todo"}, headers=h).json()
    card = client.post(
        f"/v1/boards/{board_id}/lists/{todo['id']}/cards", json={"title": "Pack"}, headers=h
    ).json()
    url = f"/v1/boards/{board_id}/cards/{card['id']}"

    res = client.patch(url, json={"title": ""}, headers=h)
    assert res.status_code == 400
    assert res.json()["error"]["fields"] == ["title"]

    res = client.patch(url, json={"description": "Light", "tags": ["travel"]}, headers=h)
    assert res.json()["description"] == "Light"
    assert res.json()["tags"] == ["travel"]
    assert res.json()["title"] == "Pack"

    client.put(f"{url}/members/{alice_id}", headers=h)
    res = client.put(f"{url}/members/{alice_id}", headers=h)
    assert [m["user"] for m in res.json()["members"]] == [alice_id]
    res = client.delete(f"{url}/members/{alice_id}", headers=h)
    assert res.json()["members"] == []

    res = client.post(f"{url}:archive?archive=true", headers=h)
    assert res.json()["archived"] is True


def test_checklist_flow(client, board_id, alice_id):
    h = auth(alice_id)
    todo = client.post(f"/v1/boards/{board_id}/lists", json={"title": "Todo"}, headers=h).json()
    card = client.post(
        f"/v1/boards/{board_id}/lists/{todo['id']}/cards", json={"title": "Pack"}, headers=h
    ).json()
    url = f"/v1/boards/{board_id}/cards/{card['id']}/checklist"

    res = client.post(url, json={"text": "Passport"}, headers=h)
    assert res.status_code == 201
    item = res.json()["checklist"][0]
    assert item["complete"] is False

    res = client.patch(f"{url}/{item['id']}", json={"text": "Passports"}, headers=h)
    assert res.json()["checklist"][0]["text"] == "Passports"
    res = client.post(f"{url}/{item['id']}:complete?complete=true", headers=h)
    assert res.json()["checklist"][0]["complete"] is True
    res = client.delete(f"{url}/{item['id']}", headers=h)
    assert res.json()["checklist"] == []
    assert client.delete(f"{url}/{item['id']}", headers=h).status_code == 404
