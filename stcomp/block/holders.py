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

"""Queries about the live device stack.

The kernel records which devices sit on top of which in sysfs: each block
device has a holders/ directory naming the devices built directly on it.
Only live state is consulted, never the configuration.
"""

import abc
import enum
import logging
import os
from typing import List, Optional

import attr

log = logging.getLogger("stcomp.block.holders")

SYS_CLASS_BLOCK = "/sys/class/block"


class DeviceKind(enum.Enum):
    DISK = "disk"
    PARTITION = "partition"
    RAID = "raid"
    BCACHE = "bcache"
    CRYPT = "crypt"
    MAPPED = "mapped"
    UNKNOWN = "unknown"


class CacheRole(enum.Enum):
    CACHE = "cache"
    BACKING = "backing"


@attr.s(auto_attribs=True, frozen=True)
class BlockDevice:
    kname: str
    path: str
    kind: DeviceKind
    cache_role: Optional[CacheRole] = None


class HolderProvider(abc.ABC):
    @abc.abstractmethod
    def describe(self, device: str) -> Optional[BlockDevice]:
        """Describe a device given by path or kernel name, None if there
        is no such device."""

    @abc.abstractmethod
    def holders_of(self, device: BlockDevice) -> List[BlockDevice]:
        """Devices built directly on top of device."""


class SysfsHolderProvider(HolderProvider):
    def __init__(self, host):
        self.host = host

    def sysfs_dir(self, kname: str) -> str:
        return os.path.join(SYS_CLASS_BLOCK, kname)

    def kname_of(self, device: str) -> str:
        if device.startswith("/"):
            return os.path.basename(self.host.realpath(device))
        return device

    def _has(self, kname, *parts) -> bool:
        return self.host.exists(os.path.join(self.sysfs_dir(kname), *parts))

    def _kind(self, kname: str) -> DeviceKind:
        if self._has(kname, "partition"):
            return DeviceKind.PARTITION
        if self._has(kname, "md"):
            return DeviceKind.RAID
        if kname.startswith("bcache"):
            return DeviceKind.BCACHE
        if self._has(kname, "dm"):
            dm_uuid = self.host.read_attr(
                os.path.join(self.sysfs_dir(kname), "dm", "uuid")
            )
            if dm_uuid and dm_uuid.startswith("CRYPT"):
                return DeviceKind.CRYPT
            return DeviceKind.MAPPED
        if self._has(kname, "device") or kname.startswith("loop"):
            return DeviceKind.DISK
        return DeviceKind.UNKNOWN

    def _cache_role(self, kname: str, kind: DeviceKind) -> Optional[CacheRole]:
        if kind == DeviceKind.BCACHE:
            # bcacheN/bcache is the backing device's directory
            return None
        if self._has(kname, "bcache", "set"):
            return CacheRole.CACHE
        if self._has(kname, "bcache", "dev") or self._has(kname, "bcache", "attach"):
            return CacheRole.BACKING
        return None

    def _path(self, kname: str, kind: DeviceKind) -> str:
        if kind in (DeviceKind.CRYPT, DeviceKind.MAPPED):
            name = self.host.read_attr(
                os.path.join(self.sysfs_dir(kname), "dm", "name")
            )
            if name:
                return os.path.join("/dev/mapper", name)
        return os.path.join("/dev", kname)

    def describe(self, device: str) -> Optional[BlockDevice]:
        kname = self.kname_of(device)
        if not self.host.isdir(self.sysfs_dir(kname)):
            return None
        kind = self._kind(kname)
        return BlockDevice(
            kname=kname,
            path=self._path(kname, kind),
            kind=kind,
            cache_role=self._cache_role(kname, kind),
        )

    def _partitions(self, device: BlockDevice) -> List[str]:
        d = self.sysfs_dir(device.kname)
        return [
            name
            for name in self.host.listdir(d)
            if name.startswith(device.kname) and self._has(name, "partition")
        ]

    def holders_of(self, device: BlockDevice) -> List[BlockDevice]:
        names = []
        if device.kind == DeviceKind.DISK:
            names.extend(self._partitions(device))
        names.extend(
            self.host.listdir(os.path.join(self.sysfs_dir(device.kname), "holders"))
        )
        log.debug("%s is held by %s", device.kname, names)
        r = []
        for name in names:
            holder = self.describe(name)
            if holder is not None:
                r.append(holder)
        return r


def holders_tree(provider: HolderProvider, device: BlockDevice) -> dict:
    """The live stack above device as nested dicts."""
    return {
        "device": device,
        "name": device.kname,
        "holders": [
            holders_tree(provider, h) for h in provider.holders_of(device)
        ],
    }


def format_holders_tree(tree: dict) -> str:
    # spacer styles based on output of 'tree --charset=ascii'
    spacers = (("`-- ", " " * 4), ("|-- ", "|" + " " * 3))

    def format_tree(tree):
        device = tree["device"]
        name = f"{tree['name']} ({device.kind.value})"
        if device.cache_role is not None:
            name = f"{name} [{device.cache_role.value}]"
        result = [name]
        holders = tree["holders"]
        for holder_no, holder in enumerate(holders):
            spacer_style = spacers[min(len(holders) - (holder_no + 1), 1)]
            for line_no, line in enumerate(format_tree(holder)):
                result.append(spacer_style[min(line_no, 1)] + line)
        return result

    return "\n".join(format_tree(tree))
