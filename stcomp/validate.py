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

import logging
import os
from typing import Dict, List, Optional

from stcomp.errors import ConfigurationError
from stcomp.models.storage import (
    BUCKET_SIZES,
    FS_TYPES,
    RAID_MIN_DEVICES,
    CacheSpec,
    StorageConfig,
)

log = logging.getLogger("stcomp.validate")


def _check_devices(what, devices, raid_level, problems):
    if raid_level is None:
        if len(devices) != 1:
            problems.append(
                f"{what}: {len(devices)} devices given but no RAID level"
            )
    elif raid_level not in RAID_MIN_DEVICES:
        problems.append(f"{what}: unsupported RAID level {raid_level}")
    elif len(devices) < RAID_MIN_DEVICES[raid_level]:
        problems.append(
            f"{what}: RAID{raid_level} needs at least "
            f"{RAID_MIN_DEVICES[raid_level]} devices, got {len(devices)}"
        )
    if len(set(devices)) != len(devices):
        problems.append(f"{what}: a device is listed more than once")


def _below(mount_point, target) -> bool:
    return mount_point == target or mount_point.startswith(target.rstrip("/") + "/")


def _check_in_use(config, host, paths, problems):
    # whatever is mounted below the target is released before each run
    target = os.path.normpath(config.target)
    mounted = {}
    for device, mount_point, _ in host.mounts():
        if device.startswith("/dev/") and not _below(mount_point, target):
            mounted[host.realpath(device)] = mount_point
    for path in paths.values():
        real = host.realpath(path)
        if real in mounted:
            problems.append(f"{path} is in use, mounted at {mounted[real]}")


def validate(
    config: StorageConfig,
    *,
    prober=None,
    paths: Optional[Dict[str, str]] = None,
    host=None,
) -> List[str]:
    """Check config for consistency, raising ConfigurationError listing
    every problem found. Returns warnings.

    With a prober and the resolved device paths, cache devices are also
    checked to be SSDs; with a host, the target's parent must exist and
    no configured device may be mounted outside the target.
    """
    problems: List[str] = []
    warnings: List[str] = []
    owners: Dict[str, str] = {}

    def claim(uuid, owner):
        if owners.setdefault(uuid, owner) != owner:
            problems.append(f"{uuid} is used by both {owners[uuid]} and {owner}")

    first_cache: Dict[frozenset, CacheSpec] = {}
    for spec in config.filesystems:
        if spec.cache is None:
            continue
        first = first_cache.setdefault(spec.cache.identity, spec.cache)
        if (first.raid_level, first.bucket_size) != (
            spec.cache.raid_level,
            spec.cache.bucket_size,
        ):
            problems.append(
                f"cache set {'+'.join(first.devices)}: conflicting settings "
                f"for {spec.label(config.prefix)}"
            )

    for cache in config.cache_specs():
        what = f"cache set {'+'.join(cache.devices)}"
        _check_devices(what, cache.devices, cache.raid_level, problems)
        if cache.bucket_size not in BUCKET_SIZES:
            problems.append(f"{what}: invalid bucket size {cache.bucket_size}")
        for uuid in cache.devices:
            claim(uuid, what)
            if prober is not None and paths and uuid in paths:
                if not prober.is_ssd(paths[uuid]):
                    problems.append(f"{what}: {paths[uuid]} is not an SSD")

    root_specs = 0
    swaps = 0
    mount_points = set()
    for index, spec in enumerate(config.filesystems):
        what = f"file system {index + 1} ({spec.label(config.prefix)})"
        _check_devices(what, spec.devices, spec.raid_level, problems)
        for uuid in spec.devices:
            claim(uuid, what)
        if spec.fs_type not in FS_TYPES:
            problems.append(f"{what}: unsupported file system {spec.fs_type}")
        if spec.is_swap:
            swaps += 1
            if spec.mount_points:
                problems.append(f"{what}: swap cannot have mount points")
            if spec.cache is not None:
                problems.append(f"{what}: swap should not be cached")
        elif spec.fs_type != "btrfs" and len(spec.mount_points) > 1:
            problems.append(
                f"{what}: only btrfs can be mounted at more than one place"
            )
        if "/" in spec.mount_points:
            root_specs += 1
        for mp in spec.mount_points:
            if mp in mount_points:
                problems.append(f"mount point {mp} is used more than once")
            mount_points.add(mp)

    if root_specs != 1:
        problems.append(
            f"exactly one file system must be mounted at /, found {root_specs}"
        )
    if swaps > 1:
        warnings.append(f"{swaps} swap file systems configured")

    target = os.path.normpath(config.target)
    if target == "/":
        problems.append("the target directory cannot be /")
    elif host is not None and not host.isdir(os.path.dirname(target)):
        problems.append(f"parent directory of {target} does not exist")
    if host is not None and paths:
        _check_in_use(config, host, paths, problems)

    if problems:
        for problem in problems:
            log.error("configuration: %s", problem)
        raise ConfigurationError(problems)
    for warning in warnings:
        log.warning("configuration: %s", warning)
    return warnings
