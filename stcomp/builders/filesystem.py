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

from stcomp.builders.base import Builder, BuildMode
from stcomp.errors import ConfigurationError
from stcomp.models.storage import FS_TYPES, FileSystemSpec, btrfs_subvolume

log = logging.getLogger("stcomp.builders.filesystem")


def _passno(mount_point: str) -> int:
    return 1 if mount_point == "/" else 2


class FilesystemBuilder(Builder):
    def __init__(self, host, resolver, provider=None):
        super().__init__(host, provider)
        self.resolver = resolver

    def build(
        self,
        spec: FileSystemSpec,
        device: str,
        label: str,
        mode: BuildMode,
        mount_table,
        rollback,
    ) -> str:
        if mode == BuildMode.ASSEMBLE:
            return device
        fs_type = spec.fs_type
        if fs_type not in FS_TYPES:
            raise ConfigurationError(f"cannot create a {fs_type} file system")
        log.info("formatting %s (volume %s) as %s", device, label, fs_type)
        self.wipe(device)
        if fs_type == "swap":
            self.host.run(["mkswap", "-L", label, device])
            uuid = self.resolver.superblock_uuid(device)
            mount_table.add_fstab(device, "none", "swap", "sw", 0, uuid=uuid)
        elif fs_type == "btrfs":
            self.host.run(["mkfs.btrfs", "-L", label, "-m", "dup", device])
            uuid = self.resolver.superblock_uuid(device)
            self._subvolumes(spec, device, uuid, mount_table, rollback)
        else:
            self.host.run([f"mkfs.{fs_type}", "-L", label, device])
            uuid = self.resolver.superblock_uuid(device)
            options = spec.effective_mount_options()
            for mp in spec.mount_points:
                mount_table.add_fstab(
                    device, mp, fs_type, options, _passno(mp), uuid=uuid
                )
        return device

    def _subvolumes(self, spec, device, uuid, mount_table, rollback):
        options = spec.effective_mount_options()
        tmp = self.host.mkdtemp()
        rollback.push(f"removing temporary mount point {tmp}", self.host.rmdir, tmp)
        self.host.run(["mount", device, tmp])
        try:
            for mp in spec.mount_points:
                subvol = btrfs_subvolume(mp)
                log.info("creating subvolume %s on %s", subvol, device)
                self.host.run(
                    ["btrfs", "subvolume", "create", os.path.join(tmp, subvol)]
                )
                mount_table.add_fstab(
                    device,
                    mp,
                    "btrfs",
                    f"subvol={subvol},{options}",
                    _passno(mp),
                    uuid=uuid,
                )
        finally:
            self.host.run(["umount", tmp])


def target_path(target: str, mount_point: str) -> str:
    if mount_point == "/":
        return target
    return target.rstrip("/") + mount_point


def mount_volume(host, spec: FileSystemSpec, device: str, target: str, mount_point):
    where = target_path(target, mount_point)
    options = spec.effective_mount_options()
    if spec.fs_type == "btrfs":
        options = f"subvol={btrfs_subvolume(mount_point)},{options}"
        log.info(
            "mounting %s subvolume %s at %s",
            device,
            btrfs_subvolume(mount_point),
            where,
        )
    else:
        log.info("mounting %s at %s", device, where)
    host.makedirs(where)
    host.run(["mount", "-o", options, device, where])
    return where
