import re
from datetime import datetime

import mongomock
import pytest

from marketplace import create_app
from marketplace.errors import UpstreamFailure
from marketplace.security import hash_password

AVATAR = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="


class FakeMediaStore:
    def __init__(self):
        self.uploads = []
        self.destroyed = []
        self.events = []
        self.fail_after = None

    def upload(self, source, folder):
        if self.fail_after is not None and len(self.uploads) >= self.fail_after:
            raise UpstreamFailure("Error uploading image.")
        public_id = f"{folder}/fake-{len(self.uploads) + 1}"
        self.uploads.append(public_id)
        self.events.append(("upload", public_id))
        return {"public_id": public_id, "url": f"https://media.test/{public_id}"}

    def destroy(self, public_id):
        self.destroyed.append(public_id)
        self.events.append(("destroy", public_id))


class FakeMailer:
    def __init__(self):
        self.messages = []
        self.fail = False

    def send(self, recipient, subject, text):
        if self.fail:
            raise UpstreamFailure("Email delivery failed: boom")
        self.messages.append({"to": recipient, "subject": subject, "text": text})
        return f"email-{len(self.messages)}"

    def last_link_token(self, path):
        match = re.search(rf"/{path}/(\S+)", self.messages[-1]["text"])
        assert match, self.messages[-1]["text"]
        return match.group(1)


@pytest.fixture
def media():
    return FakeMediaStore()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def db():
    return mongomock.MongoClient().marketplace


@pytest.fixture
def app(db, media, mailer):
    app = create_app(
        {
            "TESTING": True,
            "JWT_SECRET_KEY": "test-session-secret",
            "ACTIVATION_SECRET": "test-activation-secret",
            "FRONTEND_URL": "https://shop.test",
        },
        database=db,
        media_store=media,
        mailer=mailer,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def register_user(client, mailer, email="a@x.com", password="p", name="Ada"):
    response = client.post(
        "/api/v2/user/create-user",
        json={"name": name, "email": email, "password": password, "avatar": AVATAR},
    )
    assert response.status_code == 201, response.get_json()
    return mailer.last_link_token("activation")


def activate_user(client, mailer, email="a@x.com", password="p", name="Ada"):
    token = register_user(client, mailer, email=email, password=password, name=name)
    response = client.post("/api/v2/user/activation", json={"activation_token": token})
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def insert_admin(db, email="admin@x.com", password="admin-pass"):
    result = db.users.insert_one(
        {
            "name": "Admin",
            "email": email,
            "password": hash_password(password),
            "avatar": {"public_id": "avatars/admin", "url": "https://media.test/admin"},
            "addresses": [],
            "role": "Admin",
            "createdAt": datetime.utcnow(),
        }
    )
    return result.inserted_id


def login_user(client, email, password):
    response = client.post(
        "/api/v2/user/login-user", json={"email": email, "password": password}
    )
    assert response.status_code == 201, response.get_json()
    return response.get_json()["token"]


SHOP_FIELDS = {
    "name": "Green Grocer",
    "email": "shop@x.com",
    "password": "shop-pass",
    "avatar": AVATAR,
    "address": "1 Market Street",
    "phoneNumber": "5550100",
    "zipCode": "10001",
}


def register_shop(client, mailer, **overrides):
    response = client.post("/api/v2/shop/create-shop", json={**SHOP_FIELDS, **overrides})
    assert response.status_code == 201, response.get_json()
    return mailer.last_link_token("seller/activation")


def active_seller_token(client, mailer, **overrides):
    token = register_shop(client, mailer, **overrides)
    response = client.post("/api/v2/shop/activation", json={"activation_token": token})
    assert response.status_code == 201, response.get_json()
    return response.get_json()["token"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
