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
from typing import Optional

from stcomp.block.holders import DeviceKind, SysfsHolderProvider

log = logging.getLogger("stcomp.builders.base")


class BuildMode(enum.Enum):
    CREATE = "create"
    ASSEMBLE = "assemble"


def new_path(host, base: str) -> str:
    """base, or base followed by the first number that makes it unused."""
    path = base
    n = 0
    while host.exists(path):
        n += 1
        path = f"{base}{n}"
    return path


class Builder:
    def __init__(self, host, provider=None):
        self.host = host
        if provider is None:
            provider = SysfsHolderProvider(host)
        self.provider = provider

    def live_holder(self, device: str, kind: DeviceKind) -> Optional[str]:
        """Path of a device of the given kind already built on device."""
        desc = self.provider.describe(device)
        if desc is None:
            return None
        for holder in self.provider.holders_of(desc):
            if holder.kind == kind:
                return holder.path
        return None

    def wipe(self, *devices: str):
        self.host.run(["wipefs", "-a", *devices])
