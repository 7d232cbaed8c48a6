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

"""Which backing devices belong to which cache set.

The hints file is sourced by a shell helper at boot time, before any
cache set is registered, so it only contains plain variable assignments.
"""

import logging
import os
from typing import Dict, List

import attr

from stcompcore.file_util import generate_timestamped_header, write_file

log = logging.getLogger("stcomp.hints")

HINTS_FILE = "bcache-hints"

_BACKING_PREFIX = "cset_for_backing_uuid_"
_CSET_PREFIX = "backing_uuids_for_cset_"


def _var(uuid: str) -> str:
    return uuid.replace("-", "_")


@attr.s(auto_attribs=True)
class CacheBindings:
    cset_for_backing: Dict[str, str] = attr.Factory(dict)

    def bind(self, backing_uuid: str, cset_uuid: str):
        log.debug("backing device %s uses cache set %s", backing_uuid, cset_uuid)
        self.cset_for_backing[backing_uuid] = cset_uuid

    def backings_for(self, cset_uuid: str) -> List[str]:
        return [b for b, c in self.cset_for_backing.items() if c == cset_uuid]

    @property
    def csets(self) -> List[str]:
        return list(dict.fromkeys(self.cset_for_backing.values()))

    def render(self) -> str:
        lines = [generate_timestamped_header()]
        for backing, cset in self.cset_for_backing.items():
            lines.append(f"{_BACKING_PREFIX}{_var(backing)}={cset}")
        for cset in self.csets:
            backings = " ".join(self.backings_for(cset))
            lines.append(f"{_CSET_PREFIX}{_var(cset)}='{backings}'")
        return "\n".join(lines) + "\n"

    def write(self, state_dir: str) -> str:
        path = os.path.join(state_dir, HINTS_FILE)
        write_file(path, self.render())
        log.info("wrote cache hints to %s", path)
        return path
