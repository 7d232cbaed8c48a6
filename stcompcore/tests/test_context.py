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

from stcompcore.context import Context, Status
from stcompcore.tests import StcompTestCase


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class TestContext(StcompTestCase):
    def setUp(self):
        self.reporter = mock.Mock()
        self.reporter.project = "stcomp"
        self.clock = Clock()
        self.context = Context.new(self.reporter, clock=self.clock)

    def test_child_reports_success(self):
        with self.context.child("raid", "RAID1 for root") as child:
            self.reporter.report_start_event.assert_called_once_with(child)
            self.clock.now = 2.5
        self.reporter.report_finish_event.assert_called_once_with(child)
        self.assertEqual("stcomp/raid", child.full_name)
        self.assertEqual(Status.SUCCESS, child.result)
        self.assertEqual(2.5, child.elapsed)
        self.assertEqual("RAID1 for root", child.description)

    def test_child_reports_failure(self):
        with self.assertRaises(RuntimeError):
            with self.context.child("crypt") as child:
                raise RuntimeError("no key")
        self.assertEqual(Status.FAIL, child.result)
        self.assertEqual("no key", child.description)

    def test_interrupted(self):
        for exc in KeyboardInterrupt, SystemExit:
            with self.subTest(exc=exc):
                with self.assertRaises(exc):
                    with self.context.child("fs") as child:
                        raise exc
                self.assertEqual("interrupted", child.description)

    def test_warnings(self):
        with self.context.child("build") as run:
            run.warn("gone not found")
        self.assertEqual(Status.WARN, run.result)
        self.assertEqual(["gone not found"], run.warnings)

    def test_nested_names(self):
        run = self.context.child("mount", "/mnt/target")
        step = run.child("crypt", "encryption for root")
        self.assertEqual("stcomp/mount/crypt", step.full_name)
        self.assertEqual([step], run.children)

    def test_summary(self):
        with self.assertRaises(RuntimeError):
            with self.context.child("build") as run:
                with run.child("raid"):
                    self.clock.now = 1.0
                with run.child("teardown") as teardown:
                    teardown.warn("md127 busy")
                with run.child("filesystem"):
                    self.clock.now = 3.0
                    raise RuntimeError("mkfs failed")
        self.assertEqual(
            ["raid", "teardown", "filesystem"], [s.name for s in run.steps()]
        )
        self.assertEqual(
            "stcomp/build: 3 steps, 1 failed, 1 with warnings, 3.0s", run.summary()
        )

    def test_unfinished_steps_not_counted(self):
        with self.context.child("unmount") as run:
            run.child("teardown")
        self.assertEqual([], list(run.steps()))
        self.assertEqual("stcomp/unmount: 0 steps, 0.0s", run.summary())
