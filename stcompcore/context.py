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

import enum
import time
from typing import Iterator, List, Optional


class Status(enum.Enum):
    SUCCESS = enum.auto()
    FAIL = enum.auto()
    WARN = enum.auto()


class Context:
    """A step of a run, reported when it starts and when it finishes.

    The usual way to use this is:

    with run_context.child("raid", "RAID1 for root"):
        build_the_array()

    start and finish events go to the report_start_event and
    report_finish_event methods of the reporter, which get the context
    itself. Contexts nest, the root standing for the whole run, and each
    one keeps how it ended (result, elapsed time, warnings), so a finished
    run can be summarised with summary().

    A context that finishes normally but collected warnings through warn()
    ends as WARN rather than SUCCESS.
    """

    def __init__(self, reporter, name, description="", parent=None, clock=None):
        self.reporter = reporter
        self.name = name
        self.description = description
        self.parent = parent
        if clock is None:
            clock = time.monotonic
        self.clock = clock
        self.children: List["Context"] = []
        self.warnings: List[str] = []
        self.result: Optional[Status] = None
        self.started: Optional[float] = None
        self.elapsed: Optional[float] = None

    @classmethod
    def new(cls, reporter, clock=None):
        return cls(reporter, reporter.project, clock=clock)

    def child(self, name, description=""):
        child = Context(self.reporter, name, description, self, self.clock)
        self.children.append(child)
        return child

    @property
    def full_name(self) -> str:
        names = []
        c = self
        while c is not None:
            names.append(c.name)
            c = c.parent
        return "/".join(reversed(names))

    def warn(self, message: str):
        self.warnings.append(message)

    def enter(self):
        self.started = self.clock()
        self.reporter.report_start_event(self)

    def exit(self, result=None, description=None):
        if result is None:
            result = Status.WARN if self.warnings else Status.SUCCESS
        if description is not None:
            self.description = description
        self.result = result
        if self.started is not None:
            self.elapsed = self.clock() - self.started
        self.reporter.report_finish_event(self)

    def __enter__(self):
        self.enter()
        return self

    def __exit__(self, exc, value, tb):
        if exc is None:
            self.exit()
        elif isinstance(value, (KeyboardInterrupt, SystemExit)):
            self.exit(Status.FAIL, "interrupted")
        else:
            self.exit(Status.FAIL, str(value))

    def steps(self) -> Iterator["Context"]:
        """Every finished context below this one, depth first."""
        for child in self.children:
            if child.result is not None:
                yield child
            yield from child.steps()

    def summary(self) -> str:
        counts = {status: 0 for status in Status}
        for step in self.steps():
            counts[step.result] += 1
        parts = [f"{sum(counts.values())} steps"]
        if counts[Status.FAIL]:
            parts.append(f"{counts[Status.FAIL]} failed")
        if counts[Status.WARN]:
            parts.append(f"{counts[Status.WARN]} with warnings")
        if self.elapsed is not None:
            parts.append(f"{self.elapsed:.1f}s")
        return f"{self.full_name}: " + ", ".join(parts)
