import pytest
import requests

import portal_auth
from portal_auth import PortalAuthError, PortalClient


class FakeResponse:
    def __init__(self, payload):
        self._payload = payload

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


@pytest.fixture
def client():
    return PortalClient(
        base_url="https://portal.example/",
        client_id="cid",
        client_secret="secret",
        redirect_uri="http://localhost/api/auth/callback",
        timeout=3,
    )


def test_authorize_url_includes_state_and_scope(client):
    url = client.authorize_url("st4te")
    assert url.startswith("https://portal.example/api/authorize?")
    assert "client_id=cid" in url
    assert "scope=all-ro" in url
    assert "state=st4te" in url
    assert "response_type=code" in url


def test_authorize_url_without_client_id_is_config_error():
    with pytest.raises(PortalAuthError) as excinfo:
        PortalClient("https://portal.example", "", "s", "http://cb").authorize_url("x")
    assert excinfo.value.status_code == 500


def test_exchange_code_posts_form(client, monkeypatch):
    captured = {}

    def fake_post(url, data=None, timeout=None):
        captured.update(url=url, data=data, timeout=timeout)
        return FakeResponse({"access_token": "tok"})

    monkeypatch.setattr(portal_auth.requests, "post", fake_post)
    assert client.exchange_code("abc") == "tok"
    assert captured["url"] == "https://portal.example/api/token"
    assert captured["data"]["grant_type"] == "authorization_code"
    assert captured["data"]["code"] == "abc"
    assert captured["timeout"] == 3


def test_exchange_code_without_token_is_400(client, monkeypatch):
    monkeypatch.setattr(portal_auth.requests, "post", lambda *a, **kw: FakeResponse({"error": "invalid_grant"}))
    with pytest.raises(PortalAuthError) as excinfo:
        client.exchange_code("abc")
    assert excinfo.value.status_code == 400
    assert "invalid_grant" in excinfo.value.message


def test_exchange_code_network_failure_is_500(client, monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(portal_auth.requests, "post", boom)
    with pytest.raises(PortalAuthError) as excinfo:
        client.exchange_code("abc")
    assert excinfo.value.status_code == 500


def test_fetch_userinfo_maps_fields(client, monkeypatch):
    captured = {}

    def fake_get(url, headers=None, timeout=None):
        captured.update(url=url, headers=headers)
        return FakeResponse({"studentId": 441000001, "givenName": "Kim", "surname": "Lee", "email": " Kim@Example.COM "})

    monkeypatch.setattr(portal_auth.requests, "get", fake_get)
    info = client.fetch_userinfo("tok")
    assert captured["headers"] == {"Authorization": "Bearer tok"}
    assert info == {"student_id": "441000001", "first_name": "Kim", "last_name": "Lee", "email": "kim@example.com"}


def test_fetch_userinfo_without_student_id_is_400(client, monkeypatch):
    monkeypatch.setattr(portal_auth.requests, "get", lambda *a, **kw: FakeResponse({"givenName": "Kim"}))
    with pytest.raises(PortalAuthError) as excinfo:
        client.fetch_userinfo("tok")
    assert excinfo.value.status_code == 400


def test_fetch_userinfo_bad_json_is_500(client, monkeypatch):
    monkeypatch.setattr(portal_auth.requests, "get", lambda *a, **kw: FakeResponse(ValueError("not json")))
    with pytest.raises(PortalAuthError) as excinfo:
        client.fetch_userinfo("tok")
    assert excinfo.value.status_code == 500
