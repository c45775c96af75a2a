import copy
import json

import pytest


class FakeTransport:
    """Records requests and answers from canned responses keyed by URL fragment."""

    def __init__(self):
        self.calls = []
        self.get_responses = {}
        self.post_response = ("", [], "HTTP 500")
        self.put_response = ("", None)

    async def get(self, url, headers=None):
        self.calls.append(("GET", url, None, list(headers or [])))
        for fragment, response in self.get_responses.items():
            if fragment in url:
                return response
        return "", 404, "HTTP 404"

    async def post(self, url, body, headers=None, follow_redirects=True):
        self.calls.append(("POST", url, body, list(headers or [])))
        return self.post_response

    async def put(self, url, body, headers=None):
        self.calls.append(("PUT", url, body, list(headers or [])))
        return self.put_response

    def calls_of(self, method):
        return [c for c in self.calls if c[0] == method]

    def serve(self, structures, devices):
        self.get_responses["structures.json"] = (json.dumps(structures), 200, None)
        self.get_responses["devices.json"] = (json.dumps(devices), 200, None)


STRUCTURES = {
    "s-home": {
        "structure_id": "s-home",
        "name": "Home",
        "away": "home",
        "thermostats": ["t-hall", "t-living"],
    },
}

DEVICES = {
    "thermostats": {
        "t-hall": {
            "where_name": "Hallway",
            "temperature_scale": "C",
            "target_temperature_c": 20.5,
            "ambient_temperature_c": 19.8,
            "humidity": 45,
            "hvac_mode": "heat",
            "hvac_state": "heating",
            "can_heat": True,
            "can_cool": False,
        },
        "t-living": {
            "where_name": "Living Room",
            "temperature_scale": "C",
            "target_temperature_c": 21.0,
            "ambient_temperature_c": 21.3,
            "humidity": 55,
            "hvac_mode": "heat-cool",
            "hvac_state": "off",
            "can_heat": True,
            "can_cool": True,
        },
    },
    "smoke_co_alarms": {
        "p-kitchen": {
            "where_name": "Kitchen",
            "smoke_alarm_state": "ok",
            "co_alarm_state": "ok",
        },
    },
}


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def structures():
    return copy.deepcopy(STRUCTURES)


@pytest.fixture
def devices():
    return copy.deepcopy(DEVICES)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "nest-sync.db")
