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

from stcompcore.tests import StcompTestCase

from stcomp.hints import HINTS_FILE, CacheBindings

BACKING_A = "0a6c4b3e-1111-4c3d-9e55-1d8f0a000001"
BACKING_B = "0a6c4b3e-2222-4c3d-9e55-1d8f0a000002"
CSET = "f3e1a2b4-3333-4c3d-9e55-1d8f0a000003"


class TestCacheBindings(StcompTestCase):
    def bindings(self):
        bindings = CacheBindings()
        bindings.bind(BACKING_A, CSET)
        bindings.bind(BACKING_B, CSET)
        return bindings

    def test_render(self):
        lines = self.bindings().render().splitlines()
        self.assertTrue(lines[0].startswith("# generated by stcomp on "))
        self.assertEqual(
            [
                "cset_for_backing_uuid_0a6c4b3e_1111_4c3d_9e55_1d8f0a000001="
                + CSET,
                "cset_for_backing_uuid_0a6c4b3e_2222_4c3d_9e55_1d8f0a000002="
                + CSET,
                "backing_uuids_for_cset_f3e1a2b4_3333_4c3d_9e55_1d8f0a000003="
                + f"'{BACKING_A} {BACKING_B}'",
            ],
            lines[1:],
        )

    def test_write(self):
        d = self.tmp_dir()
        path = self.bindings().write(d)
        self.assertEqual(os.path.join(d, HINTS_FILE), path)
        with open(path) as fp:
            self.assertIn(f"={CSET}\n", fp.read())
