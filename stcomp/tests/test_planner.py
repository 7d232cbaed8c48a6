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

from unittest import mock

from stcompcore.context import Context
from stcompcore.tests import StcompTestCase

from stcomp.block.identity import IdentityResolver
from stcomp.errors import BuildStepError
from stcomp.keys import StaticKeyProvider
from stcomp.models.storage import (
    CacheSpec,
    FileSystemSpec,
    StorageConfig,
    UnitKind,
    UnitState,
)
from stcomp.planner import Goal, Layer, StackPlanner
from stcomp.rollback import RollbackStack
from stcomp.tests.mocks import FakeHost, FakeProber


class PlannerTestCase(StcompTestCase):
    def setUp(self):
        self.host = FakeHost(self.tmp_dir())
        self.uuids = {}
        for disk in "sda", "sdb", "sdc", "sdd":
            self.uuids[disk] = self.host.add_partition(disk, 1)
        self.host.makedirs("/mnt/target")
        self.app = mock.Mock()
        self.app.project = "stcomp"
        self.rollback = RollbackStack()
        self.addCleanup(self.rollback.run)

    def u(self, *disks):
        return [self.uuids[d] for d in disks]

    def make_planner(self, *filesystems, key=b"secret"):
        self.config = StorageConfig(
            filesystems=list(filesystems), hostname="box", target="/mnt/target"
        )
        resolver = IdentityResolver(self.host)
        paths = resolver.resolve_all(self.config.all_device_uuids())
        return StackPlanner(
            self.config,
            paths,
            host=self.host,
            prober=FakeProber(ssds=["sdc"]),
            resolver=resolver,
            context=Context.new(self.app),
            rollback=self.rollback,
            key_provider=StaticKeyProvider(key),
        )


class TestPlan(PlannerTestCase):
    def test_layers_bottom_up(self):
        cache = CacheSpec(self.u("sdc"))
        planner = self.make_planner(
            FileSystemSpec(self.u("sdd"), "ext4", mount_points=["/srv"]),
            FileSystemSpec(
                self.u("sda", "sdb"),
                "btrfs",
                raid_level=1,
                cache=cache,
                encrypted=True,
                mount_points=["/home", "/"],
            ),
        )
        steps = planner.plan(Goal.BUILD)
        self.assertEqual(
            [
                Layer.RAID,
                Layer.CACHE,
                Layer.BIND,
                Layer.CRYPT,
                Layer.FILESYSTEM,
                Layer.FILESYSTEM,
                Layer.MOUNT,
                Layer.MOUNT,
                Layer.MOUNT,
            ],
            [s.layer for s in steps],
        )
        self.assertEqual(
            ["mount /", "mount /home", "mount /srv"],
            [s.description for s in steps if s.layer == Layer.MOUNT],
        )
        self.assertEqual([], self.host.commands)

    def test_shared_cache_planned_once(self):
        planner = self.make_planner(
            FileSystemSpec(
                self.u("sda"),
                "ext4",
                cache=CacheSpec(self.u("sdc")),
                mount_points=["/"],
            ),
            FileSystemSpec(
                self.u("sdb"),
                "ext4",
                cache=CacheSpec(self.u("sdc")),
                mount_points=["/home"],
            ),
        )
        layers = [s.layer for s in planner.plan(Goal.BUILD)]
        self.assertEqual(1, layers.count(Layer.CACHE))
        self.assertEqual(2, layers.count(Layer.BIND))


class TestExecute(PlannerTestCase):
    def test_raid1_on_two_partitions(self):
        spec = FileSystemSpec(
            self.u("sda", "sdb"), "ext4", raid_level=1, mount_points=["/"]
        )
        build = self.make_planner(spec).execute(Goal.BUILD)
        [array] = self.host.arrays.values()
        self.assertEqual(["sda1", "sdb1"], array["members"])
        self.assertEqual("box", array["homehost"])
        self.assertEqual("/dev/md/root", spec.current_device)
        self.assertEqual("ext4", self.host.superblock("/dev/md/root")["type"])
        self.assertEqual(["/mnt/target"], build.mounts)
        self.assertEqual(["/mnt/target"], self.host.mounted())
        self.assertEqual(
            [UnitKind.RAID_ARRAY, UnitKind.FILESYSTEM_VOLUME],
            [u.kind for u in build.units],
        )
        self.assertTrue(all(u.state == UnitState.ACTIVE for u in build.units))
        raid, fs = build.units
        self.assertEqual((self.uuids["sda"],), raid.inputs[0].identity)
        self.assertEqual([raid], fs.inputs)
        [entry] = build.mount_table.fstab
        self.assertEqual(("/", 1), (entry.mount_point, entry.passno))

    def test_shared_cache_set(self):
        cache = CacheSpec(self.u("sdc"))
        root = FileSystemSpec(self.u("sda"), "ext4", cache=cache, mount_points=["/"])
        home = FileSystemSpec(
            self.u("sdb"), "xfs", cache=CacheSpec(self.u("sdc")), mount_points=["/home"]
        )
        build = self.make_planner(root, home).execute(Goal.BUILD)
        creates = [c for c in self.host.commands_named("make-bcache") if "-C" in c]
        self.assertEqual(1, len(creates))
        cset = self.host.superblock("/dev/sdc1")["cset"]
        for spec, disk in (root, "sda1"), (home, "sdb1"):
            self.assertTrue(spec.current_device.startswith("/dev/bcache"))
            bcache = self.host.kname(spec.current_device)
            self.assertEqual([bcache], self.host.holders(disk))
        self.assertEqual([cset], build.cache_bindings.csets)
        self.assertEqual(2, len(build.cache_bindings.backings_for(cset)))
        self.assertEqual(["/mnt/target", "/mnt/target/home"], self.host.mounted())

    def test_encrypted_raid(self):
        spec = FileSystemSpec(
            self.u("sda", "sdb"),
            "ext4",
            raid_level=1,
            encrypted=True,
            mount_points=["/"],
        )
        build = self.make_planner(spec).execute(Goal.BUILD)
        self.assertEqual("/dev/mapper/luks-root", spec.current_device)
        md = self.host.kname("/dev/md/root")
        dm = self.host.kname("/dev/mapper/luks-root")
        self.assertEqual([dm], self.host.holders(md))
        [crypt] = build.mount_table.crypttab
        self.assertEqual("luks-root", crypt.name)
        [entry] = build.mount_table.fstab
        self.assertEqual("/dev/mapper/luks-root", entry.render().split("\t")[0])

    def test_failure_releases_what_was_built(self):
        spec = FileSystemSpec(
            self.u("sda", "sdb"), "ext4", raid_level=1, mount_points=["/"]
        )
        planner = self.make_planner(spec)
        self.host.fail_next("mkfs.ext4")
        with self.assertLogs("stcomp.planner", level="ERROR"):
            with self.assertRaises(BuildStepError) as cm:
                planner.execute(Goal.BUILD)
        self.assertIn("ext4 file system root", cm.exception.step)
        self.assertEqual({}, self.host.arrays)
        self.assertEqual([], self.host.holders("sda1"))
        self.assertEqual([], self.host.mounted())
        self.assertTrue(all(u.state == UnitState.CLOSED for u in planner.build.units))

    def test_failed_mount_unmounts_the_rest(self):
        root = FileSystemSpec(self.u("sda"), "ext4", mount_points=["/"])
        home = FileSystemSpec(self.u("sdb"), "ext4", mount_points=["/home"])
        planner = self.make_planner(root, home)
        self.host.fail_next("mount -o relatime /dev/sdb1")
        with self.assertLogs("stcomp.planner", level="ERROR"):
            with self.assertRaises(BuildStepError):
                planner.execute(Goal.BUILD)
        self.assertEqual([], self.host.mounted())

    def test_interrupt_releases(self):
        spec = FileSystemSpec(
            self.u("sda", "sdb"),
            "ext4",
            raid_level=1,
            encrypted=True,
            mount_points=["/"],
        )
        planner = self.make_planner(spec)
        planner.key_provider = mock.Mock()
        planner.key_provider.get_key.side_effect = KeyboardInterrupt
        with self.assertRaises(KeyboardInterrupt):
            planner.execute(Goal.BUILD)
        self.assertEqual({}, self.host.arrays)

    def test_assemble_keeps_contents(self):
        spec = FileSystemSpec(
            self.u("sda", "sdb"),
            "btrfs",
            raid_level=1,
            mount_points=["/", "/var/log"],
        )
        planner = self.make_planner(spec)
        planner.execute(Goal.BUILD)
        uuid = self.host.superblock("/dev/md/root")["uuid"]
        planner.release()
        self.assertEqual({}, self.host.arrays)
        self.rollback.run()
        count = len(self.host.commands)
        build = planner.execute(Goal.MOUNT)
        self.assertEqual(uuid, self.host.superblock("/dev/md/root")["uuid"])
        later = [c[0] for c in self.host.commands[count:]]
        self.assertNotIn("wipefs", later)
        self.assertNotIn("mkfs.btrfs", later)
        self.assertEqual(["/mnt/target", "/mnt/target/var/log"], build.mounts)
