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
from typing import Callable, List

import attr

log = logging.getLogger("stcomp.rollback")


@attr.s(auto_attribs=True)
class RollbackAction:
    description: str
    fn: Callable
    args: tuple = ()
    kwargs: dict = attr.Factory(dict)


class RollbackStack:
    """Cleanup actions run in reverse order of registration.

    Used as a context manager the stack runs however the block is left,
    including KeyboardInterrupt and SystemExit.
    """

    def __init__(self):
        self._actions: List[RollbackAction] = []
        self.failures: List[tuple] = []

    def __len__(self):
        return len(self._actions)

    def push(self, description: str, fn: Callable, *args, **kwargs):
        log.debug("on exit: %s", description)
        self._actions.append(RollbackAction(description, fn, args, kwargs))

    def run(self):
        while self._actions:
            action = self._actions.pop()
            log.info("%s", action.description)
            try:
                action.fn(*action.args, **action.kwargs)
            except Exception as e:
                log.exception("%s failed", action.description)
                self.failures.append((action.description, e))
        return self.failures

    def __enter__(self):
        return self

    def __exit__(self, exc, value, tb):
        self.run()
