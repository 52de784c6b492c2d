"""
Network configuration loader

Reads a CNI-style network config (YAML, or JSON which YAML also parses)
and builds the RangeSet and Store it describes.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ranges import Range, RangeSet
from store import DEFAULT_DATA_DIR, FileStore, SQLStore, Store

XDG_CONFIG_HOME = os.environ.get("XDG_CONFIG_HOME", os.path.expanduser("~/.config"))
HOSTLOCAL_CONFIG_DIR = Path(XDG_CONFIG_HOME) / "hostlocal"
HOSTLOCAL_CONFIG_FILE = HOSTLOCAL_CONFIG_DIR / "config.yaml"

# Legacy config location (current directory)
LEGACY_CONFIG_FILE = Path("config.yaml")


class ConfigError(Exception):
    pass


@dataclass
class NetworkConfig:
    name: str
    range_set: RangeSet
    range_id: int = 0
    data_dir: str = DEFAULT_DATA_DIR
    database: Optional[Dict[str, str]] = None
    source: Optional[str] = None

    @property
    def database_url(self) -> Optional[str]:
        if not self.database:
            return None
        return self.database.get("sqlite_url") or self.database.get("postgres_url")

    def open_store(self) -> Store:
        """SQL store when a database is configured, file store otherwise"""
        url = self.database_url
        if url:
            return SQLStore(self.name, url)
        return FileStore(self.name, self.data_dir)


def resolve_config_path(config_file=None) -> Path:
    """
    Priority:
    1. Custom config_file parameter
    2. XDG config: ~/.config/hostlocal/config.yaml
    3. Legacy: ./config.yaml in current directory
    """
    if config_file:
        return Path(config_file)
    if HOSTLOCAL_CONFIG_FILE.exists():
        return HOSTLOCAL_CONFIG_FILE
    if LEGACY_CONFIG_FILE.exists():
        return LEGACY_CONFIG_FILE
    raise ConfigError(
        f"No config file found (looked in {HOSTLOCAL_CONFIG_FILE} and {LEGACY_CONFIG_FILE})"
    )


def load_config(config_file=None) -> NetworkConfig:
    path = resolve_config_path(config_file)
    try:
        with open(path, encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Config file {path} not found") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e

    config = parse_config(document)
    config.source = str(path)
    return config


def parse_config(document: Any) -> NetworkConfig:
    if not isinstance(document, dict):
        raise ConfigError("Config must be a mapping")

    name = document.get("name")
    if not name:
        raise ConfigError("Network 'name' is required")

    ipam = document.get("ipam")
    if not isinstance(ipam, dict):
        raise ConfigError("'ipam' section is required")

    database = ipam.get("database")
    if database is not None and not isinstance(database, dict):
        raise ConfigError("'ipam.database' must be a mapping")

    try:
        range_id = int(ipam.get("rangeId", 0))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid rangeId: {ipam.get('rangeId')!r}") from e

    return NetworkConfig(
        name=str(name),
        range_set=parse_range_set(ipam.get("ranges")),
        range_id=range_id,
        data_dir=ipam.get("dataDir") or DEFAULT_DATA_DIR,
        database=database,
    )


def parse_range_set(ranges: Any) -> RangeSet:
    if not ranges or not isinstance(ranges, list):
        raise ConfigError("'ipam.ranges' must be a non-empty list")

    # CNI nests range sets: [[{...}, {...}]]
    if all(isinstance(r, list) for r in ranges):
        if len(ranges) != 1:
            raise ConfigError("Exactly one range set is supported")
        ranges = ranges[0]

    range_set = RangeSet()
    for entry in ranges:
        if not isinstance(entry, dict) or "subnet" not in entry:
            raise ConfigError(f"Invalid range entry: {entry!r}")
        try:
            range_set.add(
                Range(
                    entry["subnet"],
                    start=entry.get("rangeStart", entry.get("start")),
                    end=entry.get("rangeEnd", entry.get("end")),
                    gateway=entry.get("gateway"),
                )
            )
        except ValueError as e:
            # RangeError, RangeSetError or malformed address text
            raise ConfigError(f"Invalid range {entry.get('subnet')}: {e}") from e

    if not range_set:
        raise ConfigError("'ipam.ranges' must not be empty")
    return range_set
