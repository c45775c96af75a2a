import asyncio
import json

import pytest

from nest_sync.auth import NEST_API_BASE_URL, TokenManager
from nest_sync.cloud import NestCloudAPI
from nest_sync.commands import CommandDispatcher, restore_hvac_mode
from nest_sync.errors import ErrorKind, Result
from nest_sync.index import IdentifierIndex
from nest_sync.session import Session


class Refresh:
    def __init__(self):
        self.count = 0

    async def __call__(self):
        self.count += 1
        return Result.success(0)


@pytest.fixture
def manager(transport):
    session = Session(access_token="tok")
    session.mark_valid()
    return TokenManager(session, transport)


@pytest.fixture
def index(structures, devices):
    index = IdentifierIndex()
    index.rebuild(structures, devices)
    return index


@pytest.fixture
def refresh():
    return Refresh()


@pytest.fixture
def dispatcher(manager, transport, index, refresh):
    return CommandDispatcher(NestCloudAPI(manager, transport), index, "c", refresh=refresh)


def put_calls(transport):
    return [(url, json.loads(body)) for _, url, body, _ in transport.calls_of("PUT")]


def test_restore_hvac_mode():
    assert restore_hvac_mode(True, True) == "heat-cool"
    assert restore_hvac_mode(False, True) == "cool"
    assert restore_hvac_mode(True, False) == "heat"
    assert restore_hvac_mode(False, False) == ""


def test_set_away(dispatcher, transport):
    assert asyncio.run(dispatcher.set_away(0, True)).ok
    assert asyncio.run(dispatcher.set_away(0, False)).ok

    assert put_calls(transport) == [
        (f"{NEST_API_BASE_URL}structures/s-home", {"away": "away"}),
        (f"{NEST_API_BASE_URL}structures/s-home", {"away": "home"}),
    ]


def test_set_manual_eco_mode(dispatcher, transport):
    asyncio.run(dispatcher.set_manual_eco_mode(0, True))
    asyncio.run(dispatcher.set_manual_eco_mode(0, False))
    asyncio.run(dispatcher.set_manual_eco_mode(1, False))

    assert put_calls(transport) == [
        (f"{NEST_API_BASE_URL}devices/thermostats/t-hall", {"hvac_mode": "off"}),
        (f"{NEST_API_BASE_URL}devices/thermostats/t-hall", {"hvac_mode": "heat"}),
        (f"{NEST_API_BASE_URL}devices/thermostats/t-living", {"hvac_mode": "heat-cool"}),
    ]


def test_eco_off_without_heat_or_cool_is_rejected(dispatcher, index, transport):
    index.thermostats[0].can_heat = False

    result = asyncio.run(dispatcher.set_manual_eco_mode(0, False))

    assert result.error == ErrorKind.UNRECOGNIZED
    assert transport.calls == []


def test_set_setpoint_pushes_scaled_field_and_refreshes(dispatcher, transport, refresh):
    result = asyncio.run(dispatcher.set_setpoint(1, 21.5))

    assert result.ok
    assert put_calls(transport) == [
        (f"{NEST_API_BASE_URL}devices/thermostats/t-living", {"target_temperature_c": 21.5}),
    ]
    assert refresh.count == 1


def test_fahrenheit_scale(manager, transport, index):
    dispatcher = CommandDispatcher(NestCloudAPI(manager, transport), index, "F")

    assert asyncio.run(dispatcher.set_setpoint(0, 70)).ok
    assert put_calls(transport)[0][1] == {"target_temperature_f": 70}


def test_commands_before_first_poll_are_not_ready(manager, transport):
    dispatcher = CommandDispatcher(NestCloudAPI(manager, transport), IdentifierIndex())

    assert asyncio.run(dispatcher.set_away(0, True)).error == ErrorKind.NOT_READY
    assert asyncio.run(dispatcher.set_manual_eco_mode(0, True)).error == ErrorKind.NOT_READY
    assert asyncio.run(dispatcher.set_setpoint(0, 20.0)).error == ErrorKind.NOT_READY
    assert transport.calls == []


def test_out_of_range_index_is_not_ready(dispatcher, transport):
    assert asyncio.run(dispatcher.set_away(1, True)).error == ErrorKind.NOT_READY
    assert asyncio.run(dispatcher.set_setpoint(2, 20.0)).error == ErrorKind.NOT_READY
    assert transport.calls == []


def test_failed_push_is_remote_error_and_invalidates(dispatcher, manager, transport, refresh):
    transport.put_response = ("", "HTTP 500")

    result = asyncio.run(dispatcher.set_setpoint(0, 20.0))

    assert result.error == ErrorKind.REMOTE
    assert manager.needs_login
    assert refresh.count == 0


def test_route_switch_decodes_node_ids(structures, devices, manager, transport):
    structures["s-cabin"] = {"structure_id": "s-cabin", "name": "Cabin", "thermostats": []}
    index = IdentifierIndex()
    index.rebuild(structures, devices)
    dispatcher = CommandDispatcher(NestCloudAPI(manager, transport), index)

    assert asyncio.run(dispatcher.route_switch(3, True)).ok
    assert asyncio.run(dispatcher.route_switch(6, False)).ok
    assert asyncio.run(dispatcher.route_switch(4, True)).ok
    assert asyncio.run(dispatcher.route_switch(7, True)).ok

    assert put_calls(transport) == [
        (f"{NEST_API_BASE_URL}structures/s-home", {"away": "away"}),
        (f"{NEST_API_BASE_URL}structures/s-cabin", {"away": "home"}),
        (f"{NEST_API_BASE_URL}devices/thermostats/t-hall", {"hvac_mode": "off"}),
        (f"{NEST_API_BASE_URL}devices/thermostats/t-living", {"hvac_mode": "off"}),
    ]


def test_route_switch_beyond_index_is_not_ready(dispatcher):
    assert asyncio.run(dispatcher.route_switch(9, True)).error == ErrorKind.NOT_READY
    assert asyncio.run(dispatcher.route_switch(10, True)).error == ErrorKind.NOT_READY


@pytest.mark.parametrize("node_id", [5, 8, 11, 2])
def test_route_switch_rejects_other_ids(dispatcher, transport, node_id):
    assert asyncio.run(dispatcher.route_switch(node_id, True)).error == ErrorKind.UNRECOGNIZED
    assert transport.calls == []


def test_route_setpoint(dispatcher, transport):
    assert asyncio.run(dispatcher.route_setpoint(4, 22.0)).ok
    assert put_calls(transport) == [
        (f"{NEST_API_BASE_URL}devices/thermostats/t-living", {"target_temperature_c": 22.0}),
    ]

    assert asyncio.run(dispatcher.route_setpoint(3, 22.0)).error == ErrorKind.UNRECOGNIZED
