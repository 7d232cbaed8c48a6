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
from typing import List, Optional

from stcomp.block.holders import DeviceKind
from stcomp.builders.base import Builder, BuildMode, new_path
from stcomp.errors import ConfigurationError
from stcomp.models.storage import RAID_MIN_DEVICES

log = logging.getLogger("stcomp.builders.raid")


def check_raid_members(level: int, count: int):
    if level not in RAID_MIN_DEVICES:
        raise ConfigurationError(f"unsupported RAID level {level}")
    minimum = RAID_MIN_DEVICES[level]
    if count < minimum:
        raise ConfigurationError(
            f"RAID{level} needs at least {minimum} devices, got {count}"
        )


class RaidBuilder(Builder):
    def __init__(self, host, prober, provider=None):
        super().__init__(host, provider)
        self.prober = prober

    def running_array(self, members: List[str]) -> Optional[str]:
        """The live array holding exactly these members, if any."""
        arrays = set()
        for member in members:
            holder = self.live_holder(member, DeviceKind.RAID)
            if holder is None:
                return None
            arrays.add(holder)
        if len(arrays) == 1:
            return arrays.pop()
        return None

    def build(
        self,
        name: str,
        level: int,
        members: List[str],
        mode: BuildMode,
        homehost: str,
    ) -> str:
        check_raid_members(level, len(members))
        existing = self.running_array(members)
        if existing is not None:
            log.info("RAID%s on %s is already running as %s", level, members, existing)
            return existing

        md = new_path(self.host, f"/dev/md/{name}")
        if mode == BuildMode.CREATE:
            log.info(
                "creating RAID%s %s on homehost %s from %s",
                level,
                md,
                homehost,
                ", ".join(members),
            )
            self.wipe(*members)
            cmd = [
                "mdadm",
                "--create",
                md,
                "--quiet",
                "--run",
                f"--level={level}",
                f"--homehost={homehost}",
                f"--raid-devices={len(members)}",
            ]
            fast = [m for m in members if not self.prober.is_rotational(m)]
            slow = [m for m in members if m not in fast]
            if level == 1 and fast and slow:
                log.info(
                    "reading preferably from %s, writing behind to %s",
                    ", ".join(fast),
                    ", ".join(slow),
                )
                cmd.extend(fast)
                cmd.extend(["--write-behind", "--bitmap=internal", "--write-mostly"])
                cmd.extend(slow)
            else:
                cmd.extend(members)
            self.host.run(cmd)
        else:
            log.info("assembling RAID %s from %s", md, ", ".join(members))
            self.host.run(["mdadm", "--assemble", "--quiet", md, *members])
        self.host.wait_for(md)
        return md
