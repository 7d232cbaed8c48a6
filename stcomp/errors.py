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

from typing import List, Sequence


class StorageComposerError(Exception):
    """Base of every error this package raises on purpose."""


class ConfigurationError(StorageComposerError):
    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        self.problems: List[str] = list(problems)
        super().__init__("; ".join(self.problems))


class ResolutionError(StorageComposerError):
    def __init__(self, uuids: Sequence[str]):
        self.uuids = list(uuids)
        super().__init__(
            "cannot resolve device UUID(s): {}".format(", ".join(self.uuids))
        )


class WaitTimeout(StorageComposerError):
    def __init__(self, path, timeout, gone=False):
        self.path = path
        self.timeout = timeout
        self.gone = gone
        what = "disappear" if gone else "appear"
        super().__init__(f"{path} did not {what} within {timeout}s")


class BuildStepError(StorageComposerError):
    def __init__(self, step, cause):
        self.step = step
        self.cause = cause
        super().__init__(f"{step} failed: {cause}")


class TeardownStepError(StorageComposerError):
    def __init__(self, device, cause):
        self.device = device
        self.cause = cause
        super().__init__(f"releasing {device} failed: {cause}")


class TeardownIncomplete(StorageComposerError):
    def __init__(self, errors: Sequence[TeardownStepError]):
        self.errors = list(errors)
        lines = ["teardown incomplete:"]
        lines.extend(f"  {e}" for e in self.errors)
        super().__init__("\n".join(lines))
