"""
Unit tests for the network config loader.
"""

import json

import pytest

import config
from config import ConfigError, load_config, parse_config, resolve_config_path
from ranges import Overlap, WrongNetworkAddr
from store import FileStore, SQLStore

YAML_CONFIG = """
name: mynet
ipam:
  type: host-local
  rangeId: 2
  ranges:
    - subnet: 10.22.0.0/16
      rangeStart: 10.22.0.10
      rangeEnd: 10.22.0.20
      gateway: 10.22.0.1
    - subnet: 10.23.0.0/24
"""


def cni_document(**ipam):
    document = {
        "cniVersion": "0.4.0",
        "name": "mynet",
        "type": "bridge",
        "ipam": {"type": "host-local", "ranges": [[{"subnet": "10.22.0.0/16"}]]},
    }
    document["ipam"].update(ipam)
    return document


@pytest.mark.unit
def test_load_yaml_config(temp_dir):
    path = temp_dir / "config.yaml"
    path.write_text(YAML_CONFIG, encoding="utf-8")

    cfg = load_config(str(path))

    assert cfg.name == "mynet"
    assert cfg.range_id == 2
    assert cfg.source == str(path)
    assert len(cfg.range_set) == 2
    first = cfg.range_set[0]
    assert (str(first.start), str(first.end), str(first.gateway)) == (
        "10.22.0.10",
        "10.22.0.20",
        "10.22.0.1",
    )
    assert str(cfg.range_set[1].gateway) == "10.23.0.1"


@pytest.mark.unit
def test_load_cni_json_config(temp_dir):
    path = temp_dir / "10-mynet.conf"
    path.write_text(json.dumps(cni_document(dataDir=str(temp_dir / "data"))), encoding="utf-8")

    cfg = load_config(str(path))

    assert cfg.range_id == 0
    assert str(cfg.range_set[0].subnet) == "10.22.0.0/16"
    store = cfg.open_store()
    assert isinstance(store, FileStore)
    assert store.data_dir == temp_dir / "data" / "mynet"


@pytest.mark.unit
def test_start_and_end_aliases():
    cfg = parse_config(
        cni_document(ranges=[{"subnet": "10.22.0.0/16", "start": "10.22.1.1", "end": "10.22.1.9"}])
    )

    assert str(cfg.range_set[0].start) == "10.22.1.1"
    assert str(cfg.range_set[0].end) == "10.22.1.9"


@pytest.mark.unit
def test_database_selects_sql_store(temp_dir):
    url = f"sqlite:///{temp_dir / 'ipam.db'}"
    cfg = parse_config(cni_document(database={"sqlite_url": url}))

    assert cfg.database_url == url
    store = cfg.open_store()
    assert isinstance(store, SQLStore)
    assert store.network == "mynet"
    store.close()


@pytest.mark.unit
@pytest.mark.parametrize(
    "document",
    [
        None,
        [],
        {"ipam": {"ranges": [{"subnet": "10.0.0.0/24"}]}},
        {"name": "net"},
        {"name": "net", "ipam": {"ranges": []}},
        {"name": "net", "ipam": {"ranges": [[]]}},
        {"name": "net", "ipam": {"ranges": [{"gateway": "10.0.0.1"}]}},
        {"name": "net", "ipam": {"ranges": [{"subnet": "10.0.0.0/24"}], "rangeId": "x"}},
        {"name": "net", "ipam": {"ranges": [{"subnet": "10.0.0.0/24"}], "database": "sqlite://"}},
        {"name": "net", "ipam": {"ranges": [{"subnet": "not-a-subnet"}]}},
    ],
)
def test_invalid_documents(document):
    with pytest.raises(ConfigError):
        parse_config(document)


@pytest.mark.unit
def test_multiple_range_sets_rejected():
    document = cni_document(ranges=[[{"subnet": "10.22.0.0/16"}], [{"subnet": "10.23.0.0/16"}]])

    with pytest.raises(ConfigError, match="one range set"):
        parse_config(document)


@pytest.mark.unit
def test_overlapping_ranges_rejected():
    document = cni_document(ranges=[{"subnet": "10.22.0.0/16"}, {"subnet": "10.22.0.0/24"}])

    with pytest.raises(ConfigError) as excinfo:
        parse_config(document)
    assert isinstance(excinfo.value.__cause__, Overlap)


@pytest.mark.unit
def test_wrong_network_address_rejected():
    with pytest.raises(ConfigError) as excinfo:
        parse_config(cni_document(ranges=[{"subnet": "10.22.0.1/16"}]))
    assert isinstance(excinfo.value.__cause__, WrongNetworkAddr)


@pytest.mark.unit
def test_invalid_yaml(temp_dir):
    path = temp_dir / "config.yaml"
    path.write_text("name: [unclosed", encoding="utf-8")

    with pytest.raises(ConfigError, match="Invalid config file"):
        load_config(str(path))


@pytest.mark.unit
def test_missing_explicit_file(temp_dir):
    with pytest.raises(ConfigError, match="not found"):
        load_config(str(temp_dir / "missing.yaml"))


@pytest.mark.unit
def test_resolve_config_path_priority(monkeypatch, temp_dir):
    xdg_file = temp_dir / "xdg.yaml"
    legacy_file = temp_dir / "legacy.yaml"
    monkeypatch.setattr(config, "HOSTLOCAL_CONFIG_FILE", xdg_file)
    monkeypatch.setattr(config, "LEGACY_CONFIG_FILE", legacy_file)

    with pytest.raises(ConfigError, match="No config file found"):
        resolve_config_path()

    legacy_file.write_text(YAML_CONFIG, encoding="utf-8")
    assert resolve_config_path() == legacy_file

    xdg_file.write_text(YAML_CONFIG, encoding="utf-8")
    assert resolve_config_path() == xdg_file
    assert resolve_config_path(str(legacy_file)) == legacy_file
