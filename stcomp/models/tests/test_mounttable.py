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

import os
import stat

from stcompcore.tests import StcompTestCase

from stcomp.models.mounttable import CrypttabEntry, FstabEntry, MountTable


class TestFstabEntry(StcompTestCase):
    def test_by_uuid(self):
        entry = FstabEntry("/dev/md127", "/", "ext4", "relatime", 1, uuid="abcd")
        self.assertEqual(
            "# /dev/md127 at build time:\nUUID=abcd\t/\text4\trelatime\t0\t1",
            entry.render(),
        )

    def test_mapper_device_by_name(self):
        entry = FstabEntry("/dev/mapper/luks-home", "/home", "ext4", uuid="abcd")
        self.assertEqual(
            "/dev/mapper/luks-home\t/home\text4\tdefaults\t0\t2", entry.render()
        )

    def test_no_uuid(self):
        entry = FstabEntry("/dev/sda2", "none", "swap", "sw", 0)
        self.assertEqual("/dev/sda2\tnone\tswap\tsw\t0\t0", entry.render())


class TestCrypttabEntry(StcompTestCase):
    def test_render(self):
        entry = CrypttabEntry("luks-root", "/dev/md127", uuid="abcd")
        self.assertEqual(
            "luks-root\tUUID=abcd\tnone\tluks,initramfs,x-systemd.device-timeout=10",
            entry.render(),
        )

    def test_discard(self):
        entry = CrypttabEntry("luks-root", "/dev/sda1", uuid="abcd", discard=True)
        self.assertTrue(entry.render().endswith(",discard"))


class TestMountTable(StcompTestCase):
    def test_write_without_crypttab(self):
        d = self.tmp_dir()
        table = MountTable()
        table.add_fstab("/dev/sda1", "/", "ext4", "relatime", 1, uuid="abcd")
        written = table.write(d)
        self.assertEqual([os.path.join(d, "fstab")], written)
        self.assertFalse(os.path.exists(os.path.join(d, "crypttab")))
        with open(written[0]) as fp:
            lines = fp.read().splitlines()
        self.assertTrue(lines[0].startswith("# generated by stcomp on "))
        self.assertEqual("UUID=abcd\t/\text4\trelatime\t0\t1", lines[-1])

    def test_crypttab_is_private(self):
        d = self.tmp_dir()
        table = MountTable()
        table.add_fstab("/dev/mapper/luks-root", "/", "ext4")
        table.add_crypttab("luks-root", "/dev/sda1", uuid="abcd")
        fstab, crypttab = table.write(d)
        self.assertEqual(0o600, stat.S_IMODE(os.stat(crypttab).st_mode))
        with open(crypttab) as fp:
            self.assertIn("luks-root\tUUID=abcd\tnone\t", fp.read())
