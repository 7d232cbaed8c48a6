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

from stcompcore.tests import StcompTestCase

from stcomp.block.holders import (
    CacheRole,
    DeviceKind,
    SysfsHolderProvider,
    format_holders_tree,
    holders_tree,
)
from stcomp.tests.mocks import FakeHolderProvider, FakeHost


class TestSysfsHolderProvider(StcompTestCase):
    def setUp(self):
        self.host = FakeHost(self.tmp_dir())
        self.provider = SysfsHolderProvider(self.host)

    def test_missing(self):
        self.assertIsNone(self.provider.describe("/dev/sdz"))

    def test_disk_held_by_partitions(self):
        self.host.add_partition("sda", 1)
        self.host.add_partition("sda", 2)
        disk = self.provider.describe("/dev/sda")
        self.assertEqual(DeviceKind.DISK, disk.kind)
        self.assertEqual(
            ["sda1", "sda2"], [h.kname for h in self.provider.holders_of(disk)]
        )

    def test_raid(self):
        self.host.add_partition("sda", 1)
        self.host.add_partition("sdb", 1)
        self.host.run(
            [
                "mdadm",
                "--create",
                "/dev/md/root",
                "--level=1",
                "--raid-devices=2",
                "/dev/sda1",
                "/dev/sdb1",
            ]
        )
        part = self.provider.describe("/dev/sda1")
        self.assertEqual(DeviceKind.PARTITION, part.kind)
        [md] = self.provider.holders_of(part)
        self.assertEqual(DeviceKind.RAID, md.kind)
        self.assertEqual(self.host.kname("/dev/md/root"), md.kname)

    def test_crypt_by_mapper_name(self):
        self.host.add_partition("sda", 1)
        self.host.run(["cryptsetup", "luksFormat", "/dev/sda1"], input=b"key")
        self.host.run(
            ["cryptsetup", "open", "/dev/sda1", "luks-root"], input=b"key"
        )
        [dm] = self.provider.holders_of(self.provider.describe("/dev/sda1"))
        self.assertEqual(DeviceKind.CRYPT, dm.kind)
        self.assertEqual("/dev/mapper/luks-root", dm.path)

    def test_bcache_roles(self):
        self.host.add_partition("sda", 1)
        self.host.add_partition("sdb", 1)
        cp = self.host.run(["make-bcache", "-b", "512k", "-C", "/dev/sdb1"])
        self.host.run(["make-bcache", "-B", "/dev/sda1"])
        self.host.write_attr("/sys/fs/bcache/register", "/dev/sdb1")
        self.host.write_attr("/sys/fs/bcache/register", "/dev/sda1")
        self.assertIn("Set UUID", cp.stdout)
        cache = self.provider.describe("/dev/sdb1")
        backing = self.provider.describe("/dev/sda1")
        self.assertEqual(CacheRole.CACHE, cache.cache_role)
        self.assertEqual(CacheRole.BACKING, backing.cache_role)
        [bcache] = self.provider.holders_of(backing)
        self.assertEqual(DeviceKind.BCACHE, bcache.kind)
        self.assertIsNone(bcache.cache_role)


class TestFormatHoldersTree(StcompTestCase):
    def test_format(self):
        provider = FakeHolderProvider()
        provider.add("sda", DeviceKind.DISK, held_by=["sda1", "sda2"])
        provider.add("sda1", DeviceKind.PARTITION, held_by=["md127"])
        provider.add(
            "sda2", DeviceKind.PARTITION, cache_role=CacheRole.CACHE
        )
        provider.add("md127", DeviceKind.RAID, held_by=["dm-0"])
        provider.add("dm-0", DeviceKind.CRYPT, path="/dev/mapper/luks-root")
        tree = holders_tree(provider, provider.describe("sda"))
        self.assertEqual(
            "\n".join(
                [
                    "sda (disk)",
                    "|-- sda1 (partition)",
                    "|   `-- md127 (raid)",
                    "|       `-- dm-0 (crypt)",
                    "`-- sda2 (partition) [cache]",
                ]
            ),
            format_holders_tree(tree),
        )
