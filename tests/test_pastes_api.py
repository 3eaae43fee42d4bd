def _upload(env, user: str = "alice") -> str:
    resp = env.client.post(
        "/",
        headers=env.auth(user),
        data={"name:0": "a.txt", "name:1": "b.txt"},
        files=[("file:0", ("a", b"first")), ("file:1", ("b", b"second"))],
    )
    assert resp.status_code == 201, resp.text
    return resp.text.strip().rsplit("/", 1)[-1]


def test_health(make_env) -> None:
    env = make_env()
    assert env.client.get("/health").json() == {"status": "ok"}


def test_get_unknown_paste_and_blob(make_env) -> None:
    env = make_env()
    assert env.client.get("/zzzzzz").status_code == 404
    assert env.client.get("/zzzzzz").json() == {"detail": "paste_not_found"}
    assert env.client.get("/blob/" + "A" * 43).status_code == 404


def test_non_owner_cannot_delete(make_env) -> None:
    env = make_env()
    paste_id = _upload(env)
    before = env.client.get(f"/{paste_id}").json()

    resp = env.client.delete(f"/{paste_id}", headers=env.auth("bob"))

    assert resp.status_code == 403
    assert resp.json()["detail"] == "not_owner"
    assert env.client.get(f"/{paste_id}").json() == before


def test_delete_requires_a_valid_token(make_env) -> None:
    env = make_env()
    paste_id = _upload(env)

    assert env.client.delete(f"/{paste_id}").status_code == 401
    assert env.client.delete(f"/{paste_id}", headers={"Authorization": "nope"}).status_code == 401
    assert env.client.get(f"/{paste_id}").status_code == 200


def test_owner_deletes_paste_but_blobs_remain(make_env) -> None:
    env = make_env()
    paste_id = _upload(env)
    blobs_before = env.blobs_on_disk()

    resp = env.client.delete(f"/{paste_id}", headers=env.auth("alice"))

    assert resp.status_code == 204
    assert env.client.get(f"/{paste_id}").status_code == 404
    assert env.client.delete(f"/{paste_id}", headers=env.auth("alice")).status_code == 404
    assert env.blobs_on_disk() == blobs_before
    assert env.client.get("/user/pastes", headers=env.auth("alice")).json()["ids"] == []


def test_token_rotation_over_http(make_env) -> None:
    env = make_env()
    old = env.tokens["alice"]

    resp = env.client.post("/token", headers=env.auth("alice"))
    assert resp.status_code == 200
    new = resp.json()["token"]

    assert new != old
    assert env.client.get("/user/pastes", headers={"Authorization": f"Bearer {old}"}).status_code == 401
    assert env.client.get("/user/pastes", headers={"Authorization": f"Bearer {new}"}).status_code == 200


def test_refresh_twice_only_latest_token_authorizes(make_env) -> None:
    env = make_env()
    registry = env.app.state.tokens

    first = registry.refresh_token("bob")
    second = registry.refresh_token("bob")

    files = [("file:0", ("a.txt", b"a"))]
    assert env.client.post("/", headers={"Authorization": f"Bearer {first}"}, files=files).status_code == 401
    assert env.client.post("/", headers={"Authorization": f"Bearer {second}"}, files=files).status_code == 201
