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

import datetime
import os
import tempfile

_DEF_PERMS = 0o644


def write_file(filename, content: str, mode=_DEF_PERMS):
    """Atomically replace filename with content, readable per mode.

    The data reaches the disk before the rename, so a reader at boot sees
    either the old file or the complete new one.
    """
    dirname = os.path.dirname(filename) or "."
    os.makedirs(dirname, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=dirname, prefix=".tmp-")
    try:
        with os.fdopen(fd, "w") as fp:
            fp.write(content)
            fp.flush()
            os.fsync(fp.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, filename)
    except BaseException:
        os.unlink(tmp)
        raise


def generate_timestamped_header() -> str:
    now = datetime.datetime.now(datetime.timezone.utc)
    return f"# generated by stcomp on {now.isoformat(timespec='seconds')}"
