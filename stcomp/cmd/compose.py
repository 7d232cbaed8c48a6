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

import argparse
import getpass
import logging
import signal
import sys

from stcompcore import __version__
from stcompcore.log import setup_console, setup_logger

from stcomp.block.host import Host
from stcomp.composer import Composer
from stcomp.config import DEFAULT_CONFIG
from stcomp.errors import (
    ConfigurationError,
    ResolutionError,
    StorageComposerError,
)
from stcomp.keys import KeyFileProvider, StaticKeyProvider
from stcomp.planner import Goal

LOGDIR = "/var/log/stcomp/"

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_FAILED = 2


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(EXIT_CONFIG, f"{self.prog}: error: {message}\n")


def make_compose_args_parser():
    parser = _ArgumentParser(
        description="Compose layered block storage (RAID, bcache, LUKS, "
        "file systems) from partitions, and tear it down again.",
        prog="stcomp",
    )
    goal = parser.add_mutually_exclusive_group(required=True)
    goal.add_argument(
        "-b",
        "--build",
        action="store_const",
        const=Goal.BUILD,
        dest="goal",
        help="build the storage stack, overwriting existing data",
    )
    goal.add_argument(
        "-m",
        "--mount",
        action="store_const",
        const=Goal.MOUNT,
        dest="goal",
        help="assemble and mount a previously built stack",
    )
    goal.add_argument(
        "-u",
        "--unmount",
        action="store_const",
        const=Goal.UNMOUNT,
        dest="goal",
        help="unmount and release the stack",
    )
    parser.add_argument(
        "--key-file",
        metavar="FILE",
        help="read LUKS key material from FILE instead of asking",
    )
    parser.add_argument("--log-dir", default=LOGDIR)
    parser.add_argument(
        "--no-chroot-binds",
        action="store_false",
        dest="chroot_binds",
        help="do not bind mount /dev, /proc and /sys below the target",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument(
        "config",
        nargs="?",
        default=DEFAULT_CONFIG,
        help="configuration file (default: %(default)s)",
    )
    return parser


def read_passphrase(confirm: bool) -> bytes:
    passphrase = getpass.getpass("LUKS passphrase: ")
    if not passphrase:
        raise ConfigurationError("empty passphrase")
    if confirm and getpass.getpass("Repeat passphrase: ") != passphrase:
        raise ConfigurationError("passphrases do not match")
    return passphrase.encode("utf-8")


def _terminate(signum, frame):
    # unwinds through the rollback stack like Ctrl-C does
    raise KeyboardInterrupt(signal.Signals(signum).name)


def main(argv=None):
    parser = make_compose_args_parser()
    opts = parser.parse_args(argv)

    setup_logger(dir=opts.log_dir)
    setup_console(opts.verbose)
    logger = logging.getLogger("stcomp")
    logger.info("Starting stcomp %s", __version__)
    logger.info("Arguments passed: %s", sys.argv if argv is None else argv)

    for signum in signal.SIGTERM, signal.SIGHUP:
        signal.signal(signum, _terminate)

    try:
        composer = Composer.from_file(
            opts.config, host=Host(), chroot_binds=opts.chroot_binds
        )
        if opts.goal != Goal.UNMOUNT and composer.config.has_encrypted():
            if opts.key_file:
                composer.key_provider = KeyFileProvider(opts.key_file)
            else:
                composer.key_provider = StaticKeyProvider(
                    read_passphrase(confirm=opts.goal == Goal.BUILD)
                )
        composer.run(opts.goal)
    except (ConfigurationError, ResolutionError) as e:
        logger.debug("configuration problem", exc_info=True)
        problems = getattr(e, "problems", [str(e)])
        for problem in problems:
            print(f"stcomp: {problem}", file=sys.stderr)
        return EXIT_CONFIG
    except StorageComposerError as e:
        logger.debug("failed", exc_info=True)
        print(f"stcomp: {e}", file=sys.stderr)
        return EXIT_FAILED
    except KeyboardInterrupt as e:
        print(f"stcomp: interrupted {e}".rstrip(), file=sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
