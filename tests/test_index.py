from nest_sync.index import IdentifierIndex


def test_rebuild_assigns_indices_in_response_order(structures, devices):
    index = IdentifierIndex()

    generation = index.rebuild(structures, devices)

    assert generation == 1
    assert [s.name for s in index.structures] == ["Home"]
    assert [t.name for t in index.thermostats] == ["Home Hallway", "Home Living Room"]
    assert [t.index for t in index.thermostats] == [0, 1]
    living = index.thermostats[1]
    assert living.remote_serial == "t-living"
    assert living.structure_id == "s-home"
    assert living.can_heat and living.can_cool


def test_missing_thermostat_is_skipped(structures, devices):
    structures["s-home"]["thermostats"].insert(0, "t-gone")
    index = IdentifierIndex()

    index.rebuild(structures, devices)

    assert [t.remote_serial for t in index.thermostats] == ["t-hall", "t-living"]
    assert index.thermostats[0].index == 0


def test_thermostat_without_where_name_is_called_thermostat(structures, devices):
    devices["thermostats"]["t-hall"]["where_name"] = ""
    index = IdentifierIndex()

    index.rebuild(structures, devices)

    assert index.thermostats[0].name == "Thermostat"


def test_rebuild_replaces_previous_tables(structures, devices):
    index = IdentifierIndex()
    index.rebuild(structures, devices)

    structures["s-home"]["thermostats"] = ["t-living"]
    index.rebuild(structures, devices)

    assert index.generation == 2
    assert len(index.thermostats) == 1
    assert index.resolve_thermostat(0).remote_serial == "t-living"


def test_resolve_out_of_range_or_empty():
    index = IdentifierIndex()
    assert index.resolve_structure(0) is None
    assert index.resolve_thermostat(-1) is None

    index.rebuild({"s1": {"name": "Cabin"}}, {})
    assert index.structures[0].remote_id == ""
    assert index.resolve_structure(0) is None


def test_non_string_thermostat_ids_are_skipped(structures, devices):
    structures["s-home"]["thermostats"] = [{"id": "t-hall"}, 42, "t-living"]
    index = IdentifierIndex()

    index.rebuild(structures, devices)

    assert [t.remote_serial for t in index.thermostats] == ["t-living"]
    assert index.thermostats[0].index == 0


def test_malformed_thermostat_list_is_ignored(structures, devices):
    structures["s-home"]["thermostats"] = "t-hall"
    index = IdentifierIndex()

    index.rebuild(structures, devices)

    assert [s.name for s in index.structures] == ["Home"]
    assert index.thermostats == []
