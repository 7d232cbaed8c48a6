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

"""Driving a goal from configuration to a live (or released) stack.

Nothing touches the system until the configuration has been validated and
every persisted UUID has been resolved. After that all work happens inside
one RollbackStack, so cleanup actions run however the run ends.
"""

import logging
import subprocess
from typing import Optional

from stcompcore.context import Context, Status

from stcomp.block.holders import SysfsHolderProvider
from stcomp.block.host import Host
from stcomp.block.identity import IdentityResolver
from stcomp.block.probe import BlockProber
from stcomp.builders.filesystem import target_path
from stcomp.config import load_config, save_config
from stcomp.errors import (
    BuildStepError,
    ConfigurationError,
    TeardownIncomplete,
)
from stcomp.planner import Goal, StackBuild, StackPlanner
from stcomp.rollback import RollbackStack
from stcomp.teardown import TeardownEngine
from stcomp.validate import validate

log = logging.getLogger("stcomp.composer")

CHROOT_BINDS = ["/dev", "/dev/pts", "/proc", "/run/lock", "/sys"]

UDEV_FLAG = "DM_UDEV_DISABLE_OTHER_RULES_FLAG"


class Composer:
    project = "stcomp"

    def __init__(
        self,
        config,
        *,
        host=None,
        prober=None,
        key_provider=None,
        config_path=None,
        chroot_binds=True,
    ):
        if host is None:
            host = Host()
        if prober is None:
            prober = BlockProber()
        self.config = config
        self.host = host
        self.prober = prober
        self.key_provider = key_provider
        self.config_path = config_path
        self.chroot_binds = chroot_binds
        self.resolver = IdentityResolver(host)
        self.provider = SysfsHolderProvider(host)
        self.context = Context.new(self, clock=host.monotonic)
        self.warnings = []

    @classmethod
    def from_file(cls, path, *, host=None, **kw):
        if host is None:
            host = Host()
        config = load_config(path, IdentityResolver(host))
        return cls(config, host=host, config_path=path, **kw)

    def report_start_event(self, context):
        log.info("start %s: %s", context.full_name, context.description)

    def report_finish_event(self, context):
        level = logging.INFO
        if context.result == Status.FAIL:
            level = logging.ERROR
        elif context.result == Status.WARN:
            level = logging.WARNING
        log.log(
            level,
            "finish %s: %s (%s)",
            context.full_name,
            context.description,
            context.result.name,
        )
        for warning in context.warnings:
            log.warning("%s: %s", context.full_name, warning)
        if context.children:
            log.log(level, "%s", context.summary())

    def _resolve(self, goal: Goal):
        uuids = self.config.all_device_uuids()
        if goal != Goal.UNMOUNT:
            return self.resolver.resolve_all(uuids)
        paths = {}
        for uuid in uuids:
            path = self.resolver.resolve(uuid)
            if path is not None:
                paths[uuid] = path
        return paths

    def _devices_to_release(self, paths):
        devices = []
        for spec in reversed(self.config.filesystems):
            devices.extend(paths[u] for u in spec.devices if u in paths)
        for cache in self.config.cache_specs():
            devices.extend(paths[u] for u in cache.devices if u in paths)
        return devices

    def _disable_udev_rules(self, rollback):
        log.info("disabling 'other' udev rules")
        self.host.run(["udevadm", "control", f"--property={UDEV_FLAG}=1"])
        rollback.push(
            "re-enabling 'other' udev rules",
            self.host.run,
            ["udevadm", "control", f"--property={UDEV_FLAG}="],
            check=False,
        )

    def release_stack(self, paths, context):
        engine = TeardownEngine(self.host, self.provider)
        with context.child("teardown", f"releasing {self.config.target}"):
            engine.unmount_tree(self.config.target)
            engine.unlock_all(self._devices_to_release(paths))
        if engine.errors:
            raise TeardownIncomplete(engine.errors)

    def bind_mount(self, planner: StackPlanner):
        target = self.config.target
        for d in CHROOT_BINDS:
            where = target_path(target, d)
            self.host.makedirs(where)
            self.host.run(["mount", "--bind", d, where])
            planner.build.mounts.append(where)

    def run(self, goal: Goal) -> Optional[StackBuild]:
        config = self.config
        paths = self._resolve(goal)
        self.warnings = validate(
            config, prober=self.prober, paths=paths, host=self.host
        )
        if goal != Goal.UNMOUNT and config.has_encrypted():
            if self.key_provider is None:
                raise ConfigurationError("encrypted file systems need a key")

        context = self.context.child(goal.value, config.target)
        for uuid in config.all_device_uuids():
            if uuid not in paths:
                context.warn(f"{uuid} not found, nothing to release there")

        with context, RollbackStack() as rollback:
            if self.key_provider is not None:
                rollback.push("forgetting key material", self.key_provider.forget)
            self._disable_udev_rules(rollback)
            self.release_stack(paths, context)
            if goal == Goal.UNMOUNT:
                log.info("storage unmounted from %s", config.target)
                return None

            target = config.target
            if self.host.exists(target) and not self.host.is_empty_dir(target):
                raise ConfigurationError(f"{target} is not empty")
            self.host.makedirs(target)

            planner = StackPlanner(
                config,
                paths,
                host=self.host,
                prober=self.prober,
                resolver=self.resolver,
                context=context,
                rollback=rollback,
                key_provider=self.key_provider,
                provider=self.provider,
            )
            build = planner.execute(goal)

            if self.chroot_binds:
                try:
                    with context.child("chroot", "bind mounts"):
                        self.bind_mount(planner)
                except (subprocess.CalledProcessError, OSError) as e:
                    planner.release()
                    raise BuildStepError("bind mounts for chroot", e) from e

            if goal == Goal.BUILD:
                self._persist(build)
            log.info("%s finished, storage is at %s", goal.value, target)
            return build

    def _persist(self, build: StackBuild):
        config = self.config
        build.mount_table.write(config.state_dir)
        if build.cache_bindings.cset_for_backing:
            build.cache_bindings.write(config.state_dir)
        if self.config_path is not None:
            save_config(config, self.config_path)
