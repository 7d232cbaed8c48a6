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

from stcompcore.utils import parse_key_values

from stcomp.block.holders import CacheRole, DeviceKind
from stcomp.builders.base import Builder, BuildMode
from stcomp.errors import StorageComposerError

log = logging.getLogger("stcomp.builders.cache")

BCACHE_FS = "/sys/fs/bcache"


class CacheBuilder(Builder):
    def cset_dir(self, cset_uuid: str) -> str:
        return os.path.join(BCACHE_FS, cset_uuid)

    def bcache_dir(self, device: str) -> str:
        return os.path.join(
            self.provider.sysfs_dir(self.provider.kname_of(device)), "bcache"
        )

    def register(self, device: str):
        try:
            self.host.write_attr(os.path.join(BCACHE_FS, "register"), device)
        except OSError as e:
            # the kernel refuses devices that are registered already
            log.debug("registering %s: %s", device, e)

    def live_cset(self, device: str):
        desc = self.provider.describe(device)
        if desc is None or desc.cache_role != CacheRole.CACHE:
            return None
        return os.path.basename(
            self.host.realpath(os.path.join(self.bcache_dir(device), "set"))
        )

    def build(self, device: str, bucket_size: str, mode: BuildMode) -> str:
        """Make device a registered cache set, returning the set UUID."""
        cset = self.live_cset(device)
        if cset is not None:
            log.info("%s is already running cache set %s", device, cset)
            return cset
        if mode == BuildMode.CREATE:
            log.info("creating cache device %s", device)
            self.wipe(device)
            cp = self.host.run(["make-bcache", "-b", bucket_size, "-C", device])
            key = "Set UUID"
        else:
            log.info("registering cache device %s", device)
            cp = self.host.run(["bcache-super-show", device])
            key = "cset.uuid"
        cset = parse_key_values(cp.stdout).get(key)
        if not cset:
            raise StorageComposerError(f"no {key} in output of {cp.args[0]}")
        if not self.host.exists(self.cset_dir(cset)):
            self.register(device)
        self.host.wait_for(self.cset_dir(cset))
        return cset

    def bind(self, backing: str, cset_uuid: str, mode: BuildMode) -> str:
        """Attach backing to the cache set, returning the bcache device."""
        existing = self.live_holder(backing, DeviceKind.BCACHE)
        if existing is not None:
            log.info("%s is already cached as %s", backing, existing)
            return existing
        if mode == BuildMode.CREATE:
            log.info("configuring %s as backing device", backing)
            self.wipe(backing)
            self.host.run(["make-bcache", "-B", self.host.realpath(backing)])
        log.info("attaching %s to cache set %s", backing, cset_uuid)
        bdir = self.bcache_dir(backing)
        self.register(backing)
        self.host.wait_for(os.path.join(bdir, "attach"))
        try:
            self.host.write_attr(os.path.join(bdir, "attach"), cset_uuid)
        except OSError:
            # registration attaches to the set in the superblock by itself
            attached = self.host.realpath(os.path.join(bdir, "cache"))
            if os.path.basename(attached) != cset_uuid:
                raise
        dev_link = self.host.wait_for(os.path.join(bdir, "dev"))
        path = os.path.join("/dev", os.path.basename(self.host.realpath(dev_link)))
        self.host.wait_for(path)
        return path
