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
import re
from typing import Optional

import pyudev

log = logging.getLogger("stcomp.block.probe")


def guess_parent_kname(kname: str) -> str:
    """sda1 -> sda, nvme0n1p2 -> nvme0n1, md127 -> md127."""
    m = re.match(r"^((?:nvme|mmcblk)\d+(?:n\d+)?)p\d+$", kname)
    if m:
        return m.group(1)
    if kname.startswith(("md", "dm-", "bcache", "loop")):
        return kname
    return re.split(r"\d+", kname)[0] or kname


class BlockProber:
    """Answers the questions the builders have about physical media."""

    def __init__(self, context=None):
        if context is None:
            context = pyudev.Context()
        self.context = context

    def _disk(self, path: str):
        kname = os.path.basename(os.path.realpath(path))
        try:
            device = pyudev.Devices.from_device_file(self.context, path)
            if device.device_type == "partition":
                parent = device.find_parent("block", "disk")
                if parent is not None:
                    return parent
            return device
        except (pyudev.DeviceNotFoundError, OSError, ValueError) as e:
            log.debug("udev lookup of %s failed (%s), guessing parent", path, e)
        parent = guess_parent_kname(kname)
        try:
            return pyudev.Devices.from_name(self.context, "block", parent)
        except pyudev.DeviceNotFoundError:
            log.warning("cannot find block device %s", parent)
            return None

    def _attr(self, path: str, name: str) -> Optional[int]:
        disk = self._disk(path)
        if disk is None:
            return None
        try:
            return disk.attributes.asint(name)
        except (KeyError, ValueError):
            return None

    def is_rotational(self, path: str) -> bool:
        # unknown counts as rotational
        return self._attr(path, "queue/rotational") != 0

    def is_removable(self, path: str) -> bool:
        return self._attr(path, "removable") == 1

    def is_ssd(self, path: str) -> bool:
        return not self.is_removable(path) and not self.is_rotational(path)
