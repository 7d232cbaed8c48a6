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
import subprocess
from typing import List, Optional, Sequence

from stcompcore.utils import log_process_streams, run_command

log = logging.getLogger("stcomp.runner")


class LoggedCommandRunner:
    """Runs storage commands, logging what ran and what it said when it
    failed."""

    def __init__(self, ident):
        self.ident = ident

    def run(
        self, cmd: Sequence[str], *, input: Optional[bytes] = None, check=True
    ) -> subprocess.CompletedProcess:
        cmd: List[str] = list(cmd)
        log.info("%s: running %s", self.ident, " ".join(cmd))
        try:
            return run_command(cmd, input=input, check=check)
        except subprocess.CalledProcessError as cpe:
            log_process_streams(logging.DEBUG, cpe, " ".join(cmd))
            raise


def get_command_runner(ident="stcomp"):
    return LoggedCommandRunner(ident)
