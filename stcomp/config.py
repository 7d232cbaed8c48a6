# Copyright 2026 Canonical, Ltd.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.

"""Reading and writing the persisted storage configuration.

Devices are stored by UUID. A configuration may be written by hand with
device paths instead; load_config converts those to UUIDs.
"""

import logging
import os
from typing import Optional

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from stcompcore.file_util import write_file

from stcomp.errors import ConfigurationError
from stcomp.models.storage import (
    BUCKET_SIZES,
    DEFAULT_BUCKET_SIZE,
    FS_TYPES,
    RAID_MIN_DEVICES,
    CacheSpec,
    FileSystemSpec,
    StorageConfig,
)

log = logging.getLogger("stcomp.config")

CONFIG_VERSION = 1

DEFAULT_CONFIG = os.path.join("~", ".stcomp.yaml")

_devices_schema = {
    "type": "array",
    "items": {"type": "string", "minLength": 1},
    "minItems": 1,
}

_raid_level_schema = {"enum": [None] + sorted(RAID_MIN_DEVICES)}

cache_schema = {
    "type": "object",
    "properties": {
        "devices": _devices_schema,
        "raid_level": _raid_level_schema,
        "bucket_size": {"enum": BUCKET_SIZES},
    },
    "required": ["devices"],
    "additionalProperties": False,
}

filesystem_schema = {
    "type": "object",
    "properties": {
        "devices": _devices_schema,
        "raid_level": _raid_level_schema,
        "cache": {"oneOf": [{"type": "null"}, cache_schema]},
        "encrypted": {"type": "boolean"},
        "fs_type": {"enum": FS_TYPES},
        "mount_points": {
            "type": "array",
            "items": {"type": "string", "pattern": "^/"},
        },
        "mount_options": {"type": ["string", "null"]},
    },
    "required": ["devices", "fs_type"],
    "additionalProperties": False,
}

config_schema = {
    "type": "object",
    "properties": {
        "version": {"type": "integer", "enum": [CONFIG_VERSION]},
        "prefix": {"type": "string", "pattern": "^[A-Za-z0-9_-]*$"},
        "target": {"type": "string", "pattern": "^/"},
        "hostname": {"type": "string", "minLength": 1},
        "state_dir": {"type": "string", "pattern": "^/"},
        "filesystems": {
            "type": "array",
            "items": filesystem_schema,
            "minItems": 1,
        },
    },
    "required": ["filesystems"],
    "additionalProperties": False,
}


def _to_uuid(device: str, resolver) -> str:
    if not device.startswith("/"):
        return device
    if resolver is None:
        raise ConfigurationError(f"cannot identify {device} without a resolver")
    uuid = resolver.identify(device)
    if uuid is None:
        raise ConfigurationError(f"cannot identify {device}, no (partition) UUID")
    log.debug("%s is %s", device, uuid)
    return uuid


def _cache_from_data(data, resolver) -> Optional[CacheSpec]:
    if data is None:
        return None
    return CacheSpec(
        devices=[_to_uuid(d, resolver) for d in data["devices"]],
        raid_level=data.get("raid_level"),
        bucket_size=data.get("bucket_size", DEFAULT_BUCKET_SIZE),
    )


def config_from_data(data, resolver=None) -> StorageConfig:
    try:
        jsonschema.validate(data, config_schema)
    except ValidationError as e:
        path = "/".join(str(p) for p in e.absolute_path)
        raise ConfigurationError(f"{path or 'configuration'}: {e.message}")
    filesystems = []
    for fs in data["filesystems"]:
        filesystems.append(
            FileSystemSpec(
                devices=[_to_uuid(d, resolver) for d in fs["devices"]],
                fs_type=fs["fs_type"],
                raid_level=fs.get("raid_level"),
                cache=_cache_from_data(fs.get("cache"), resolver),
                encrypted=fs.get("encrypted", False),
                mount_points=fs.get("mount_points", []),
                mount_options=fs.get("mount_options"),
            )
        )
    kw = {
        k: data[k] for k in ("prefix", "target", "hostname", "state_dir") if k in data
    }
    return StorageConfig(filesystems=filesystems, **kw)


def config_to_data(config: StorageConfig) -> dict:
    filesystems = []
    for spec in config.filesystems:
        cache = None
        if spec.cache is not None:
            cache = {
                "devices": list(spec.cache.devices),
                "raid_level": spec.cache.raid_level,
                "bucket_size": spec.cache.bucket_size,
            }
        filesystems.append(
            {
                "devices": list(spec.devices),
                "raid_level": spec.raid_level,
                "cache": cache,
                "encrypted": spec.encrypted,
                "fs_type": spec.fs_type,
                "mount_points": list(spec.mount_points),
                "mount_options": spec.mount_options,
            }
        )
    return {
        "version": CONFIG_VERSION,
        "prefix": config.prefix,
        "target": config.target,
        "hostname": config.hostname,
        "state_dir": config.state_dir,
        "filesystems": filesystems,
    }


def load_config(path, resolver=None) -> StorageConfig:
    path = os.path.expanduser(path)
    try:
        with open(path) as fp:
            data = yaml.safe_load(fp)
    except OSError as e:
        raise ConfigurationError(f"cannot read {path}: {e.strerror}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{path} is not valid YAML: {e}")
    log.debug("loaded configuration from %s", path)
    return config_from_data(data, resolver)


def save_config(config: StorageConfig, path):
    path = os.path.expanduser(path)
    write_file(path, yaml.safe_dump(config_to_data(config), sort_keys=False))
    log.info("saved configuration to %s", path)
