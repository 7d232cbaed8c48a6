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
from typing import List, Optional

import attr

from stcompcore.file_util import generate_timestamped_header, write_file

log = logging.getLogger("stcomp.models.mounttable")

FSTAB_HEADER = "# <device>\t<mount point>\t<type>\t<options>\t<dump>\t<pass>"
CRYPTTAB_HEADER = "# <name>\t<device>\t<key file>\t<options>"


def device_ref(device: str, uuid: Optional[str]) -> str:
    if uuid is None or device.startswith("/dev/mapper/"):
        return device
    return f"UUID={uuid}"


@attr.s(auto_attribs=True)
class FstabEntry:
    device: str
    mount_point: str
    fs_type: str
    options: str = "defaults"
    passno: int = 2
    uuid: Optional[str] = None
    dump: int = 0

    def render(self) -> str:
        fields = [
            device_ref(self.device, self.uuid),
            self.mount_point,
            self.fs_type,
            self.options or "defaults",
            str(self.dump),
            str(self.passno),
        ]
        line = "\t".join(fields)
        if fields[0] != self.device:
            line = f"# {self.device} at build time:\n{line}"
        return line


@attr.s(auto_attribs=True)
class CrypttabEntry:
    name: str
    device: str
    uuid: Optional[str] = None
    key_file: str = "none"
    discard: bool = False

    def render(self) -> str:
        options = "luks,initramfs,x-systemd.device-timeout=10"
        if self.discard:
            options += ",discard"
        return "\t".join(
            [self.name, device_ref(self.device, self.uuid), self.key_file, options]
        )


@attr.s(auto_attribs=True)
class MountTable:
    """fstab and crypttab entries collected while a stack is built."""

    fstab: List[FstabEntry] = attr.Factory(list)
    crypttab: List[CrypttabEntry] = attr.Factory(list)

    def add_fstab(self, *args, **kw) -> FstabEntry:
        entry = FstabEntry(*args, **kw)
        log.debug("fstab entry %s", entry)
        self.fstab.append(entry)
        return entry

    def add_crypttab(self, *args, **kw) -> CrypttabEntry:
        entry = CrypttabEntry(*args, **kw)
        log.debug("crypttab entry %s", entry)
        self.crypttab.append(entry)
        return entry

    def render_fstab(self) -> str:
        lines = [generate_timestamped_header(), FSTAB_HEADER]
        lines.extend(e.render() for e in self.fstab)
        return "\n".join(lines) + "\n"

    def render_crypttab(self) -> str:
        lines = [generate_timestamped_header(), CRYPTTAB_HEADER]
        lines.extend(e.render() for e in self.crypttab)
        return "\n".join(lines) + "\n"

    def write(self, state_dir: str) -> List[str]:
        fstab = os.path.join(state_dir, "fstab")
        write_file(fstab, self.render_fstab())
        written = [fstab]
        if self.crypttab:
            crypttab = os.path.join(state_dir, "crypttab")
            write_file(crypttab, self.render_crypttab(), mode=0o600)
            written.append(crypttab)
        log.info("wrote %s", ", ".join(written))
        return written
