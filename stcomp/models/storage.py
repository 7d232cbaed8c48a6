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

import enum
import logging
import socket
from typing import Dict, List, Optional, Tuple

import attr

log = logging.getLogger("stcomp.models.storage")


FS_TYPES = ["ext2", "ext3", "ext4", "btrfs", "xfs", "swap"]

BUCKET_SIZES = [
    "64k", "128k", "256k", "512k",
    "1M", "2M", "4M", "8M", "16M", "32M", "64M",
]  # fmt: skip

DEFAULT_BUCKET_SIZE = "512k"

# Smallest number of members mdadm accepts for each level.
RAID_MIN_DEVICES = {0: 2, 1: 2, 4: 3, 5: 3, 6: 4, 10: 4}

_DEFAULT_MOUNT_OPTIONS = {
    "ext2": "relatime,errors=remount-ro",
    "ext3": "relatime",
    "ext4": "relatime",
    "xfs": "relatime",
    "btrfs": "compress=lzo,relatime",
    "swap": "sw",
}


def default_mount_options(fs_type: str) -> str:
    return _DEFAULT_MOUNT_OPTIONS[fs_type]


def mount_depth(mount_point: str) -> int:
    if mount_point == "/":
        return 0
    return mount_point.rstrip("/").count("/")


def sort_mount_points(mount_points) -> List[str]:
    """Mount points without trailing slashes, parents before children."""
    normalized = [mp.rstrip("/") or "/" for mp in mount_points]
    return sorted(normalized, key=lambda mp: (mount_depth(mp), mp))


def btrfs_subvolume(mount_point: str) -> str:
    # / -> @, /home -> @home, /var/log -> @var-log
    return "@" + mount_point[1:].replace("/", "-")


class UnitKind(enum.Enum):
    PARTITION = "partition"
    RAID_ARRAY = "raid"
    CACHE_SET = "cache-set"
    BACKING_ATTACHMENT = "backing"
    ENCRYPTED_VOLUME = "luks"
    FILESYSTEM_VOLUME = "fs"


class UnitState(enum.Enum):
    UNBOUND = enum.auto()
    BUILDING = enum.auto()
    ACTIVE = enum.auto()
    CLOSING = enum.auto()
    CLOSED = enum.auto()


_TRANSITIONS = {
    UnitState.UNBOUND: {UnitState.BUILDING},
    UnitState.BUILDING: {UnitState.ACTIVE, UnitState.CLOSING},
    UnitState.ACTIVE: {UnitState.CLOSING},
    UnitState.CLOSING: {UnitState.CLOSED},
    UnitState.CLOSED: set(),
}


@attr.s(auto_attribs=True, eq=False)
class StorageUnit:
    """One node of a composed stack.

    `identity` is stable across runs: a partition is identified by its UUID,
    a derived unit by its kind and the identities of its inputs. `path` is
    whatever the kernel calls the device right now and is never persisted.
    """

    kind: UnitKind
    identity: tuple
    inputs: List["StorageUnit"] = attr.Factory(list)
    path: Optional[str] = None
    state: UnitState = UnitState.UNBOUND
    name: Optional[str] = None
    cset_uuid: Optional[str] = None

    @classmethod
    def leaf(cls, uuid: str, path: str) -> "StorageUnit":
        unit = cls(kind=UnitKind.PARTITION, identity=(uuid,), path=path)
        unit.transition(UnitState.BUILDING)
        unit.transition(UnitState.ACTIVE)
        return unit

    @classmethod
    def derived(cls, kind: UnitKind, inputs, **kw) -> "StorageUnit":
        identity = (kind.value,) + tuple(i.identity for i in inputs)
        return cls(kind=kind, identity=identity, inputs=list(inputs), **kw)

    def transition(self, state: UnitState):
        if state not in _TRANSITIONS[self.state]:
            raise ValueError(
                f"{self.kind.value} {self.path}: cannot go from "
                f"{self.state.name} to {state.name}"
            )
        log.debug(
            "%s %s: %s -> %s", self.kind.value, self.path, self.state.name, state.name
        )
        self.state = state


@attr.s(auto_attribs=True)
class CacheSpec:
    devices: List[str]
    raid_level: Optional[int] = None
    bucket_size: str = DEFAULT_BUCKET_SIZE

    @property
    def identity(self) -> frozenset:
        return frozenset(self.devices)


@attr.s(auto_attribs=True)
class FileSystemSpec:
    devices: List[str]
    fs_type: str
    raid_level: Optional[int] = None
    cache: Optional[CacheSpec] = None
    encrypted: bool = False
    mount_points: List[str] = attr.ib(factory=list, converter=sort_mount_points)
    mount_options: Optional[str] = None

    # Runtime only, never persisted.
    current_device: Optional[str] = attr.ib(default=None, eq=False, repr=False)
    units: List[StorageUnit] = attr.ib(factory=list, eq=False, repr=False)

    def label(self, prefix: str = "") -> str:
        if self.mount_points:
            label = self.mount_points[0][1:].replace("/", "-") or "root"
        else:
            label = self.fs_type
        return prefix + label

    def effective_mount_options(self) -> str:
        options = self.mount_options or default_mount_options(self.fs_type)
        if self.fs_type == "btrfs" and self.raid_level is not None:
            # keep btrfs from treating an md array as an SSD
            options = "nossd," + options
        return options

    @property
    def is_swap(self) -> bool:
        return self.fs_type == "swap"


@attr.s(auto_attribs=True)
class StorageConfig:
    filesystems: List[FileSystemSpec] = attr.Factory(list)
    prefix: str = ""
    target: str = "/mnt/target"
    hostname: str = attr.Factory(socket.gethostname)
    state_dir: str = "/var/lib/stcomp"

    def cache_specs(self) -> List[CacheSpec]:
        """Distinct cache sets in order of first reference."""
        seen: Dict[frozenset, CacheSpec] = {}
        for spec in self.filesystems:
            if spec.cache is not None:
                seen.setdefault(spec.cache.identity, spec.cache)
        return list(seen.values())

    def mount_points(self) -> List[Tuple[str, FileSystemSpec]]:
        """(mount point, spec) over all specs, parents before children."""
        r = [(mp, spec) for spec in self.filesystems for mp in spec.mount_points]
        return sorted(r, key=lambda p: (mount_depth(p[0]), p[0]))

    def has_encrypted(self) -> bool:
        return any(spec.encrypted for spec in self.filesystems)

    def all_device_uuids(self) -> List[str]:
        r = []
        for spec in self.filesystems:
            r.extend(spec.devices)
        for cache in self.cache_specs():
            r.extend(cache.devices)
        return r
