from urllib.parse import unquote, urlsplit

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from app import create_app, seed_data
from client import ApiClient
from db import SessionLocal

API_KEY = "test-anon-key"
ADMIN_EMAIL = "admin@clinic.test"
ADMIN_PASSWORD = "Admin#Pass1"
DEMO_PASSWORD = "Demo#Pass1"
BASE_URL = "http://clinic.test"


class FlaskAdapter(BaseAdapter):
    """requests transport that hands prepared requests to a Flask test client."""

    def __init__(self, flask_client):
        super().__init__()
        self.flask_client = flask_client
        self.calls = 0

    def send(self, request, **kwargs):
        self.calls += 1
        url = urlsplit(request.url)
        headers = {k: v for k, v in request.headers.items() if k.lower() != "content-length"}
        r = self.flask_client.open(unquote(url.path), method=request.method, query_string=url.query,
                                   headers=headers, data=request.body)
        resp = requests.Response()
        resp.status_code = r.status_code
        resp.reason = r.status
        resp.headers = CaseInsensitiveDict(r.headers)
        resp._content = r.get_data()
        resp.encoding = "utf-8"
        resp.url = request.url
        resp.request = request
        return resp

    def close(self):
        pass


@pytest.fixture
def sent_codes():
    return []

@pytest.fixture
def app(sent_codes):
    app = create_app({
        "TESTING": True,
        "DATABASE_URL": "sqlite://",
        "API_KEY": API_KEY,
        "OTP_MAX_ATTEMPTS": 3,
    })
    app.extensions["otp_sender"] = lambda method, value, code: sent_codes.append((method, value, code))
    with SessionLocal() as db:
        seed_data(db, ADMIN_EMAIL, ADMIN_PASSWORD, demo=True, demo_password=DEMO_PASSWORD)
    yield app

@pytest.fixture
def client(app):
    return app.test_client()

def bearer(token):
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def anon():
    return bearer(API_KEY)

@pytest.fixture
def login(client, anon):
    def _login(email, password=DEMO_PASSWORD):
        r = client.post("/auth/signin", json={"email": email, "password": password}, headers=anon)
        assert r.status_code == 200, r.get_json()
        return bearer(r.get_json()["token"])
    return _login

@pytest.fixture
def staff(login):
    return login("staff@dentalclinic.com")

@pytest.fixture
def patient(login):
    return login("patient@example.com")

@pytest.fixture
def admin(login):
    return login(ADMIN_EMAIL, ADMIN_PASSWORD)

@pytest.fixture
def adapter(client):
    return FlaskAdapter(client)

@pytest.fixture
def make_api(adapter):
    def _make():
        http = requests.Session()
        http.mount(BASE_URL, adapter)
        return ApiClient(BASE_URL, api_key=API_KEY, session=http)
    return _make
