import json

import pytest
import requests

import strava_export


def make_response(status_code, payload=None, reason=None):
    resp = requests.Response()
    resp.status_code = status_code
    resp.reason = reason or ("OK" if status_code < 400 else "Bad Request")
    resp.encoding = "utf-8"
    resp._content = json.dumps(payload).encode("utf-8") if payload is not None else b""
    return resp


def make_activity(act_id, start_date="2025-09-02T04:37:58Z", **overrides):
    activity = {
        "id": act_id,
        "name": f"Activity {act_id}",
        "type": "Run",
        "start_date": start_date,
        "distance": 5000.0,
        "elapsed_time": 1800,
        "moving_time": 1700,
        "total_elevation_gain": 40.0,
    }
    activity.update(overrides)
    return activity


class FakeStrava:
    """Records calls and serves a token response plus a queue of activity pages."""

    def __init__(self, pages, token_status=200, page_status=200):
        self.pages = list(pages)
        self.token_status = token_status
        self.page_status = page_status
        self.token_calls = []
        self.activity_calls = []

    def post(self, url, **kwargs):
        self.token_calls.append((url, kwargs))
        if self.token_status != 200:
            return make_response(self.token_status, {"message": "Bad Request"}, reason="Bad Request")
        return make_response(200, {"access_token": "access-123", "expires_at": 0})

    def get(self, url, **kwargs):
        self.activity_calls.append((url, kwargs))
        if self.page_status != 200:
            return make_response(self.page_status, {"message": "Authorization Error"}, reason="Unauthorized")
        page = kwargs["params"]["page"]
        if page <= len(self.pages):
            return make_response(200, self.pages[page - 1])
        return make_response(200, [])


@pytest.fixture
def fake_strava(monkeypatch):
    def install(pages, **kwargs):
        fake = FakeStrava(pages, **kwargs)
        monkeypatch.setattr(strava_export.requests, "post", fake.post)
        monkeypatch.setattr(strava_export.requests, "get", fake.get)
        return fake

    return install


@pytest.fixture
def credentials():
    return strava_export.StravaCredentials(client_id="id", client_secret="secret", refresh_token="refresh")
