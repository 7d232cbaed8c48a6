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

"""The live system as seen by the composer.

Every side effect on block devices goes through a Host: running commands,
reading and writing sysfs attributes, waiting for device nodes and looking
at the mount and swap tables. Paths are always given as the kernel sees
them; a Host with a different root (as used by the tests) maps them below
that root.
"""

import logging
import os
import subprocess
import tempfile
import time
from typing import List, Optional, Sequence, Tuple

from stcomp.errors import WaitTimeout
from stcomp.runner import get_command_runner

log = logging.getLogger("stcomp.block.host")

# seconds to wait for a device node or sysfs entry
MAX_WAIT = 10


def _unescape_mount_field(field: str) -> str:
    # /proc/mounts escapes space, tab, newline and backslash as octal
    for esc, char in (("\\040", " "), ("\\011", "\t"), ("\\012", "\n")):
        field = field.replace(esc, char)
    return field.replace("\\134", "\\")


class Host:
    def __init__(self, runner=None, root="/"):
        if runner is None:
            runner = get_command_runner()
        self.runner = runner
        self.root = root

    def p(self, path: str) -> str:
        if self.root == "/":
            return path
        return os.path.join(self.root, path.lstrip("/"))

    def unroot(self, path: str) -> str:
        if self.root == "/":
            return path
        rel = os.path.relpath(path, self.root)
        if rel == ".":
            return "/"
        return "/" + rel

    # time is part of the host so that waits can be simulated
    def sleep(self, seconds: float):
        time.sleep(seconds)

    def monotonic(self) -> float:
        return time.monotonic()

    def run(
        self, cmd: Sequence[str], *, input: Optional[bytes] = None, check=True
    ) -> subprocess.CompletedProcess:
        return self.runner.run(cmd, input=input, check=check)

    def exists(self, path: str) -> bool:
        return os.path.exists(self.p(path))

    def isdir(self, path: str) -> bool:
        return os.path.isdir(self.p(path))

    def realpath(self, path: str) -> str:
        return self.unroot(os.path.realpath(self.p(path)))

    def listdir(self, path: str) -> List[str]:
        try:
            return sorted(os.listdir(self.p(path)))
        except FileNotFoundError:
            return []

    def is_empty_dir(self, path: str) -> bool:
        return self.isdir(path) and not self.listdir(path)

    def makedirs(self, path: str):
        os.makedirs(self.p(path), exist_ok=True)

    def mkdtemp(self, prefix="stcomp-") -> str:
        return self.unroot(tempfile.mkdtemp(prefix=prefix, dir=self.p("/tmp")))

    def rmdir(self, path: str):
        os.rmdir(self.p(path))

    def read_attr(self, path: str) -> Optional[str]:
        try:
            with open(self.p(path)) as fp:
                return fp.read().strip()
        except OSError:
            return None

    def write_attr(self, path: str, value: str):
        log.debug("echo %s > %s", value, path)
        with open(self.p(path), "w") as fp:
            fp.write(value)

    def wait_for(
        self,
        path: str,
        *,
        gone: bool = False,
        timeout: float = MAX_WAIT,
        interval: float = 0.5,
    ):
        deadline = self.monotonic() + timeout
        while self.exists(path) == gone:
            if self.monotonic() >= deadline:
                raise WaitTimeout(path, timeout, gone=gone)
            self.sleep(interval)
        return path

    def settle(self):
        self.run(["udevadm", "settle"], check=False)

    def mounts(self) -> List[Tuple[str, str, str]]:
        """(device, mount point, fs type) for each line of /proc/mounts."""
        r = []
        try:
            with open(self.p("/proc/mounts")) as fp:
                lines = fp.read().splitlines()
        except FileNotFoundError:
            return r
        for line in lines:
            fields = line.split()
            if len(fields) < 3:
                continue
            r.append(tuple(_unescape_mount_field(f) for f in fields[:3]))
        return r

    def swaps(self) -> List[str]:
        try:
            with open(self.p("/proc/swaps")) as fp:
                lines = fp.read().splitlines()
        except FileNotFoundError:
            return []
        return [line.split()[0] for line in lines[1:] if line.strip()]
