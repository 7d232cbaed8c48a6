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

from stcomp.block.holders import DeviceKind
from stcomp.builders.base import Builder, BuildMode, new_path

log = logging.getLogger("stcomp.builders.crypt")


class CryptBuilder(Builder):
    def __init__(self, host, prober, resolver, prefix="", provider=None):
        super().__init__(host, provider)
        self.prober = prober
        self.resolver = resolver
        self.prefix = prefix

    def mapped_name(self, label: str) -> str:
        return os.path.basename(
            new_path(self.host, f"/dev/mapper/{self.prefix}luks-{label}")
        )

    def build(
        self, device: str, label: str, key: bytes, mode: BuildMode, mount_table
    ) -> str:
        existing = self.live_holder(device, DeviceKind.CRYPT)
        if existing is not None:
            log.info("%s is already open as %s", device, existing)
            return existing
        name = self.mapped_name(label)
        if mode == BuildMode.CREATE:
            log.info("formatting %s as LUKS device", device)
            self.host.run(
                [
                    "cryptsetup",
                    "--batch-mode",
                    "--hash",
                    "sha512",
                    "--key-size",
                    "512",
                    "--key-file",
                    "-",
                    "luksFormat",
                    device,
                ],
                input=key,
            )
            mount_table.add_crypttab(
                name,
                device,
                uuid=self.resolver.superblock_uuid(device),
                discard=self.prober.is_ssd(device),
            )
        path = f"/dev/mapper/{name}"
        log.info("mapping LUKS device %s to %s", device, path)
        self.host.run(
            ["cryptsetup", "--key-file", "-", "open", "--type", "luks", device, name],
            input=key,
        )
        self.host.wait_for(path)
        return path
