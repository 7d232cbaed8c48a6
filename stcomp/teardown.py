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

"""Releasing a live device stack.

A device can only be released once nothing holds it any more, so the walk
is depth first: every holder is released before the device itself. Failures
do not stop the walk; they are collected in TeardownEngine.errors so that
as much as possible gets released.
"""

import logging
import os
import subprocess
from typing import Iterable, List, Set

from stcomp.block.holders import (
    BlockDevice,
    CacheRole,
    DeviceKind,
    SysfsHolderProvider,
    format_holders_tree,
    holders_tree,
)
from stcomp.errors import StorageComposerError, TeardownStepError

log = logging.getLogger("stcomp.teardown")

# an array that is still syncing refuses to stop for a while
RAID_STOP_RETRIES = 10
RAID_STOP_BACKOFF = 0.5
RAID_STOP_MAX_BACKOFF = 3


class TeardownEngine:
    def __init__(self, host, provider=None):
        self.host = host
        if provider is None:
            provider = SysfsHolderProvider(host)
        self.provider = provider
        self.errors: List[TeardownStepError] = []
        self._visited: Set[str] = set()

    def unlock(self, device: str) -> List[TeardownStepError]:
        return self.unlock_all([device])

    def unlock_all(self, devices: Iterable[str]) -> List[TeardownStepError]:
        """Release everything built on top of devices, and the devices
        themselves where they are composed. Returns the errors of this
        call."""
        self._visited = set()
        first_error = len(self.errors)
        for path in devices:
            device = self.provider.describe(path)
            if device is None:
                log.debug("%s does not exist, nothing to release", path)
                continue
            if log.isEnabledFor(logging.DEBUG):
                log.debug(
                    "releasing\n%s",
                    format_holders_tree(holders_tree(self.provider, device)),
                )
            self._unlock(device)
        return self.errors[first_error:]

    def _unlock(self, device: BlockDevice):
        if device.kname in self._visited:
            return
        self._visited.add(device.kname)
        for holder in self.provider.holders_of(device):
            self._unlock(holder)
        try:
            self._swapoff(device)
            self._release_cache_role(device)
            getattr(self, "_release_" + device.kind.value)(device)
        except (
            subprocess.CalledProcessError,
            OSError,
            StorageComposerError,
        ) as e:
            if isinstance(e, TeardownStepError):
                error = e
            else:
                error = TeardownStepError(device.path, e)
            log.warning("%s", error)
            self.errors.append(error)

    def _sysfs(self, device: BlockDevice, *parts) -> str:
        return os.path.join(self.provider.sysfs_dir(device.kname), *parts)

    def _swapoff(self, device: BlockDevice):
        target = self.host.realpath(device.path)
        for swap in self.host.swaps():
            if self.host.realpath(swap) == target:
                log.info("turning off swap on %s", device.path)
                self.host.run(["swapoff", device.path])
                return

    def _release_cache_role(self, device: BlockDevice):
        if device.cache_role == CacheRole.CACHE:
            cset_dir = self.host.realpath(self._sysfs(device, "bcache", "set"))
            log.info("stopping cache set %s on %s", cset_dir, device.path)
            self.host.write_attr(self._sysfs(device, "bcache", "set", "stop"), "1")
            self.host.wait_for(cset_dir, gone=True)
        elif device.cache_role == CacheRole.BACKING:
            stop = self._sysfs(device, "bcache", "stop")
            if self.host.exists(stop):
                log.info("unregistering backing device %s", device.path)
                self.host.write_attr(stop, "1")

    def _release_raid(self, device: BlockDevice):
        log.info("stopping RAID %s", device.path)
        delay = RAID_STOP_BACKOFF
        for attempt in range(1, RAID_STOP_RETRIES + 1):
            sync_action = self._sysfs(device, "md", "sync_action")
            try:
                # resync restarts soon, but not before --stop gets a chance
                self.host.write_attr(sync_action, "idle")
            except OSError as e:
                log.debug("cannot idle %s: %s", device.kname, e)
            try:
                self.host.run(["mdadm", "--stop", device.path])
            except subprocess.CalledProcessError as e:
                log.debug(
                    "mdadm --stop %s failed, attempt %d/%d",
                    device.path,
                    attempt,
                    RAID_STOP_RETRIES,
                )
                last = e
            else:
                self.host.settle()
                return
            if attempt < RAID_STOP_RETRIES:
                self.host.sleep(delay)
                delay = min(delay * 2, RAID_STOP_MAX_BACKOFF)
        raise TeardownStepError(
            device.path, f"still busy after {RAID_STOP_RETRIES} attempts: {last}"
        )

    def _release_bcache(self, device: BlockDevice):
        log.info("detaching and stopping %s", device.path)
        detach = self._sysfs(device, "bcache", "detach")
        if self.host.exists(detach):
            self.host.write_attr(detach, "1")
        self.host.write_attr(self._sysfs(device, "bcache", "stop"), "1")
        self.host.wait_for(self.provider.sysfs_dir(device.kname), gone=True)

    def _release_crypt(self, device: BlockDevice):
        log.info("closing LUKS device %s", device.path)
        self.host.run(["cryptsetup", "close", os.path.basename(device.path)])
        self.host.settle()

    def _release_mapped(self, device: BlockDevice):
        log.info("removing mapped device %s", device.path)
        self.host.run(["dmsetup", "remove", os.path.basename(device.path)])
        self.host.settle()

    def _release_disk(self, device: BlockDevice):
        pass

    def _release_partition(self, device: BlockDevice):
        pass

    def _release_unknown(self, device: BlockDevice):
        log.warning("do not know how to release %s, skipping", device.path)

    def unmount(self, mount_point: str):
        log.info("unmounting %s", mount_point)
        self.host.run(["umount", "-l", mount_point])

    def unmount_tree(self, target: str) -> List[str]:
        """Lazily unmount everything at or below target, deepest first."""
        target = target.rstrip("/") or "/"
        below = target.rstrip("/") + "/"
        mount_points = sorted(
            {
                mp
                for _, mp, _ in self.host.mounts()
                if mp == target or mp.startswith(below)
            },
            reverse=True,
        )
        unmounted = []
        for mp in mount_points:
            try:
                self.unmount(mp)
            except subprocess.CalledProcessError as e:
                error = TeardownStepError(mp, e)
                log.warning("%s", error)
                self.errors.append(error)
            else:
                unmounted.append(mp)
        return unmounted
