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
from typing import Dict, Iterable, Optional

from stcomp.errors import ResolutionError

log = logging.getLogger("stcomp.block.identity")

# partition UUIDs survive reformatting, so they are tried first
LINK_DIRS = ["/dev/disk/by-partuuid", "/dev/disk/by-uuid"]


class IdentityResolver:
    """Maps persistent UUIDs to whatever the kernel calls the device now.

    Nothing is cached: each lookup reads the udev maintained links again.
    """

    def __init__(self, host):
        self.host = host

    def resolve(self, uuid: str) -> Optional[str]:
        for d in LINK_DIRS:
            link = os.path.join(d, uuid)
            if self.host.exists(link):
                path = self.host.realpath(link)
                log.debug("resolved %s to %s", uuid, path)
                return path
        log.debug("%s not found", uuid)
        return None

    def identify(self, path: str) -> Optional[str]:
        if not self.host.exists(path):
            return None
        target = self.host.realpath(path)
        for d in LINK_DIRS:
            for name in self.host.listdir(d):
                if self.host.realpath(os.path.join(d, name)) == target:
                    return name
        return None

    def resolve_all(self, uuids: Iterable[str]) -> Dict[str, str]:
        r = {}
        missing = []
        for uuid in uuids:
            if uuid in r or uuid in missing:
                continue
            path = self.resolve(uuid)
            if path is None:
                missing.append(uuid)
            else:
                r[uuid] = path
        if missing:
            raise ResolutionError(missing)
        return r

    def superblock_uuid(self, path: str) -> Optional[str]:
        # -p reads the superblock itself, which does not work for
        # mapped devices, hence the second try from the cache.
        for probe in ["-p"], []:
            cp = self.host.run(
                ["blkid", *probe, "-o", "value", "-s", "UUID", path], check=False
            )
            uuid = (cp.stdout or "").strip()
            if cp.returncode == 0 and uuid:
                return uuid
        log.debug("no superblock UUID on %s", path)
        return None
