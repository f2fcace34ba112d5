from flask_jwt_extended import decode_token

from conftest import (
    AVATAR,
    activate_user,
    bearer,
    insert_admin,
    login_user,
    register_user,
)


def test_create_user_defers_persistence_until_activation(client, db, mailer, media):
    register_user(client, mailer)

    assert db.users.count_documents({}) == 0
    assert media.uploads == ["avatars/fake-1"]
    assert mailer.messages[-1]["to"] == "a@x.com"
    assert "https://shop.test/activation/" in mailer.messages[-1]["text"]


def test_create_user_requires_all_fields(client):
    response = client.post(
        "/api/v2/user/create-user", json={"name": "Ada", "email": "a@x.com", "password": "p"}
    )

    assert response.status_code == 400
    assert response.get_json() == {"success": False, "message": "Missing required fields"}


def test_second_registration_with_same_email_fails(client, mailer):
    activate_user(client, mailer)

    response = client.post(
        "/api/v2/user/create-user",
        json={"name": "Other", "email": "A@x.com", "password": "q", "avatar": AVATAR},
    )

    assert response.status_code == 400
    assert response.get_json()["message"] == "User already exists"


def test_activation_token_is_single_use(client, mailer):
    token = register_user(client, mailer)

    first = client.post("/api/v2/user/activation", json={"activation_token": token})
    second = client.post("/api/v2/user/activation", json={"activation_token": token})

    assert first.status_code == 201
    assert second.status_code == 400
    assert second.get_json() == {"success": False, "message": "User already exists"}


def test_activation_rejects_tampered_token(client, mailer):
    token = register_user(client, mailer)
    header, payload, signature = token.split(".")
    flipped = "A" if signature[0] != "A" else "B"
    tampered = ".".join([header, payload, flipped + signature[1:]])

    response = client.post("/api/v2/user/activation", json={"activation_token": tampered})

    assert response.status_code == 400
    assert response.get_json()["success"] is False


def test_activation_stores_hashed_password(client, db, mailer):
    activate_user(client, mailer)

    stored = db.users.find_one({"email": "a@x.com"})
    assert stored["password"] != "p"
    assert stored["role"] == "user"
    assert stored["avatar"]["public_id"] == "avatars/fake-1"


def test_signup_activation_login_end_to_end(app, client, db, mailer):
    activate_user(client, mailer, email="a@x.com", password="p")

    fresh = app.test_client()
    response = fresh.post("/api/v2/user/login-user", json={"email": "a@x.com", "password": "p"})
    assert response.status_code == 201
    body = response.get_json()
    assert body["success"] is True
    assert "password" not in body["user"]

    cookie = fresh.get_cookie("token")
    assert cookie is not None
    with app.app_context():
        claims = decode_token(cookie.value)
    assert claims["sub"] == str(db.users.find_one({"email": "a@x.com"})["_id"])

    wrong = app.test_client().post(
        "/api/v2/user/login-user", json={"email": "a@x.com", "password": "wrong"}
    )
    assert wrong.status_code == 400
    assert wrong.get_json() == {"success": False, "message": "Invalid password!"}


def test_login_unknown_email_is_not_found(client):
    response = client.post(
        "/api/v2/user/login-user", json={"email": "nobody@x.com", "password": "p"}
    )

    assert response.status_code == 404


def test_session_cookie_flags(app, client, mailer):
    activate_user(client, mailer)

    plain = app.test_client().post(
        "/api/v2/user/login-user", json={"email": "a@x.com", "password": "p"}
    )
    forwarded = app.test_client().post(
        "/api/v2/user/login-user",
        json={"email": "a@x.com", "password": "p"},
        headers={"X-Forwarded-Proto": "https"},
    )

    plain_cookie = plain.headers["Set-Cookie"]
    assert "HttpOnly" in plain_cookie
    assert "SameSite=Strict" in plain_cookie
    assert "Secure" not in plain_cookie
    assert "Secure" in forwarded.headers["Set-Cookie"]


def test_getuser_with_cookie_and_logout(client, mailer):
    activate_user(client, mailer)

    response = client.get("/api/v2/user/getuser")
    assert response.status_code == 200
    assert response.get_json()["user"]["email"] == "a@x.com"

    logout = client.get("/api/v2/user/logout")
    assert logout.status_code == 200
    assert client.get("/api/v2/user/getuser").status_code == 401


def test_update_user_info_requires_password(client, mailer):
    activate_user(client, mailer)

    rejected = client.put(
        "/api/v2/user/update-user-info",
        json={"name": "Ada L", "email": "a@x.com", "password": "nope", "phoneNumber": "1"},
    )
    accepted = client.put(
        "/api/v2/user/update-user-info",
        json={"name": "Ada L", "email": "ada@x.com", "password": "p", "phoneNumber": "555"},
    )

    assert rejected.status_code == 400
    assert accepted.status_code == 200
    user = accepted.get_json()["user"]
    assert (user["name"], user["email"], user["phoneNumber"]) == ("Ada L", "ada@x.com", "555")


def test_update_avatar_uploads_before_deleting_old(client, db, mailer, media):
    activate_user(client, mailer)
    destroy = media.destroy

    def destroy_after_swap(public_id):
        media.events.append(("stored", db.users.find_one()["avatar"]["public_id"]))
        destroy(public_id)

    media.destroy = destroy_after_swap
    response = client.put("/api/v2/user/update-avatar", json={"avatar": AVATAR})

    assert response.status_code == 200
    assert response.get_json()["user"]["avatar"]["public_id"] == "avatars/fake-2"
    assert media.events == [
        ("upload", "avatars/fake-1"),
        ("upload", "avatars/fake-2"),
        ("stored", "avatars/fake-2"),
        ("destroy", "avatars/fake-1"),
    ]


def test_update_avatar_requires_image(client, mailer):
    activate_user(client, mailer)

    response = client.put("/api/v2/user/update-avatar", json={"avatar": ""})

    assert response.status_code == 400


def test_addresses_are_unique_per_type(client, mailer):
    activate_user(client, mailer)
    address = {"country": "NL", "city": "Eindhoven", "address1": "Street 1", "addressType": "Home"}

    created = client.put("/api/v2/user/update-user-addresses", json=address)
    duplicate = client.put("/api/v2/user/update-user-addresses", json=address)

    assert created.status_code == 200
    assert duplicate.status_code == 400

    address_id = created.get_json()["user"]["addresses"][0]["_id"]
    removed = client.delete(f"/api/v2/user/delete-user-address/{address_id}")
    assert removed.get_json()["user"]["addresses"] == []


def test_update_user_password(app, client, mailer):
    activate_user(client, mailer)

    mismatch = client.put(
        "/api/v2/user/update-user-password",
        json={"oldPassword": "p", "newPassword": "n1", "confirmPassword": "n2"},
    )
    changed = client.put(
        "/api/v2/user/update-user-password",
        json={"oldPassword": "p", "newPassword": "n1", "confirmPassword": "n1"},
    )

    assert mismatch.status_code == 400
    assert changed.status_code == 200
    login_user(app.test_client(), "a@x.com", "n1")


def test_user_info_is_public_and_hides_password(app, client, db, mailer):
    activate_user(client, mailer)
    user_id = str(db.users.find_one()["_id"])

    response = app.test_client().get(f"/api/v2/user/user-info/{user_id}")
    missing = app.test_client().get("/api/v2/user/user-info/5f0c1b2a3d4e5f6a7b8c9d0e")
    malformed = app.test_client().get("/api/v2/user/user-info/not-an-id")

    assert response.status_code == 200
    assert "password" not in response.get_json()["user"]
    assert missing.status_code == 404
    assert malformed.status_code == 400


def test_admin_lists_users_newest_first(app, client, db, mailer):
    activate_user(client, mailer, email="first@x.com")
    activate_user(app.test_client(), mailer, email="second@x.com")
    insert_admin(db)
    admin_token = login_user(app.test_client(), "admin@x.com", "admin-pass")

    response = app.test_client().get("/api/v2/user/admin-all-users", headers=bearer(admin_token))

    assert response.status_code == 200
    emails = [user["email"] for user in response.get_json()["users"]]
    assert emails.index("second@x.com") < emails.index("first@x.com")
    assert all("password" not in user for user in response.get_json()["users"])


def test_admin_delete_user_removes_avatar(app, client, db, mailer, media):
    activate_user(client, mailer)
    user_id = db.users.find_one({"email": "a@x.com"})["_id"]
    insert_admin(db)
    admin_token = login_user(app.test_client(), "admin@x.com", "admin-pass")

    response = app.test_client().delete(
        f"/api/v2/user/delete-user/{user_id}", headers=bearer(admin_token)
    )

    assert response.status_code == 200
    assert db.users.find_one({"_id": user_id}) is None
    assert media.destroyed == ["avatars/fake-1"]


def test_forgot_password_response_is_uniform(client, mailer):
    activate_user(client, mailer)
    sent_before = len(mailer.messages)

    known = client.post("/api/v2/user/forgot-password", json={"email": "a@x.com"})
    unknown = client.post("/api/v2/user/forgot-password", json={"email": "ghost@x.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.get_json() == unknown.get_json()
    assert len(mailer.messages) == sent_before + 1


def test_forgot_password_survives_mail_failure(client, mailer):
    activate_user(client, mailer)
    mailer.fail = True

    response = client.post("/api/v2/user/forgot-password", json={"email": "a@x.com"})

    assert response.status_code == 200


def test_reset_password_flow(app, client, mailer):
    activate_user(client, mailer)
    client.post("/api/v2/user/forgot-password", json={"email": "a@x.com"})
    token = mailer.last_link_token("reset-password")

    response = client.post(
        "/api/v2/user/reset-password", json={"token": token, "newPassword": "fresh"}
    )

    assert response.status_code == 200
    login_user(app.test_client(), "a@x.com", "fresh")


def test_reset_password_rejects_activation_token(client, mailer):
    token = register_user(client, mailer)

    response = client.post(
        "/api/v2/user/reset-password", json={"token": token, "newPassword": "fresh"}
    )

    assert response.status_code == 400


def test_reset_password_rejects_tampered_token(app, client, mailer):
    activate_user(client, mailer)
    client.post("/api/v2/user/forgot-password", json={"email": "a@x.com"})
    header, payload, signature = mailer.last_link_token("reset-password").split(".")
    flipped = "A" if signature[0] != "A" else "B"
    tampered = ".".join([header, payload, flipped + signature[1:]])

    response = client.post(
        "/api/v2/user/reset-password", json={"token": tampered, "newPassword": "fresh"}
    )

    assert response.status_code == 400
    login_user(app.test_client(), "a@x.com", "p")


def test_overlong_password_is_rejected_before_upload(client, media):
    response = client.post(
        "/api/v2/user/create-user",
        json={"name": "Ada", "email": "a@x.com", "password": "p" * 80, "avatar": AVATAR},
    )

    assert response.status_code == 400
    assert response.get_json()["success"] is False
    assert media.uploads == []


def test_reset_password_rejects_overlong_password(app, client, mailer):
    activate_user(client, mailer)
    client.post("/api/v2/user/forgot-password", json={"email": "a@x.com"})
    token = mailer.last_link_token("reset-password")

    response = client.post(
        "/api/v2/user/reset-password", json={"token": token, "newPassword": "é" * 40}
    )

    assert response.status_code == 400
    login_user(app.test_client(), "a@x.com", "p")
