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

"""Turning a StorageConfig into an ordered list of build steps.

Layers are built bottom up: RAID arrays, cache sets, cache attachments,
encryption, file systems and finally mounts. Steps of one layer run in
configuration order, except mounts which run parents first.
"""

import enum
import functools
import logging
from typing import Callable, Dict, List, Optional

import attr

from stcomp.builders.base import BuildMode
from stcomp.builders.cache import CacheBuilder
from stcomp.builders.crypt import CryptBuilder
from stcomp.builders.filesystem import FilesystemBuilder, mount_volume
from stcomp.builders.raid import RaidBuilder
from stcomp.errors import BuildStepError
from stcomp.hints import CacheBindings
from stcomp.models.mounttable import MountTable
from stcomp.models.storage import (
    CacheSpec,
    FileSystemSpec,
    StorageConfig,
    StorageUnit,
    UnitKind,
    UnitState,
)
from stcomp.teardown import TeardownEngine

log = logging.getLogger("stcomp.planner")


class Goal(enum.Enum):
    BUILD = "build"
    MOUNT = "mount"
    UNMOUNT = "unmount"

    @property
    def mode(self) -> BuildMode:
        if self == Goal.BUILD:
            return BuildMode.CREATE
        return BuildMode.ASSEMBLE


class Layer(enum.Enum):
    RAID = "raid"
    CACHE = "cache"
    BIND = "bind"
    CRYPT = "crypt"
    FILESYSTEM = "filesystem"
    MOUNT = "mount"


@attr.s(auto_attribs=True)
class PlanStep:
    layer: Layer
    description: str
    spec: Optional[FileSystemSpec]
    fn: Callable[[], None] = attr.ib(repr=False)


@attr.s(auto_attribs=True)
class StackBuild:
    units: List[StorageUnit] = attr.Factory(list)
    mounts: List[str] = attr.Factory(list)
    cache_bindings: CacheBindings = attr.Factory(CacheBindings)
    mount_table: MountTable = attr.Factory(MountTable)


class StackPlanner:
    def __init__(
        self,
        config: StorageConfig,
        paths: Dict[str, str],
        *,
        host,
        prober,
        resolver,
        context,
        rollback,
        key_provider=None,
        provider=None,
        teardown=None,
    ):
        self.config = config
        self.paths = paths
        self.host = host
        self.resolver = resolver
        self.context = context
        self.rollback = rollback
        self.key_provider = key_provider
        if teardown is None:
            teardown = TeardownEngine(host, provider)
        self.teardown = teardown
        self.raid = RaidBuilder(host, prober, provider)
        self.cache = CacheBuilder(host, provider)
        self.crypt = CryptBuilder(host, prober, resolver, config.prefix, provider)
        self.filesystem = FilesystemBuilder(host, resolver, provider)
        self._reset(Goal.BUILD)

    def _reset(self, goal: Goal):
        self.mode = goal.mode
        self.build = StackBuild()
        self.leaves: Dict[str, StorageUnit] = {
            uuid: StorageUnit.leaf(uuid, path) for uuid, path in self.paths.items()
        }
        self.cache_sets: Dict[frozenset, StorageUnit] = {}
        for spec in self.config.filesystems:
            spec.current_device = self.paths.get(spec.devices[0])
            spec.units = []

    def plan(self, goal: Goal) -> List[PlanStep]:
        self._reset(goal)
        config = self.config
        steps = []

        def add(layer, description, spec, fn, *args):
            fn = functools.partial(fn, *args)
            steps.append(PlanStep(layer, description, spec, fn))

        for spec in config.filesystems:
            if spec.raid_level is not None:
                add(
                    Layer.RAID,
                    f"RAID{spec.raid_level} for {spec.label(config.prefix)}",
                    spec,
                    self._raid,
                    spec,
                )
        for cache in config.cache_specs():
            add(
                Layer.CACHE,
                f"cache set on {', '.join(cache.devices)}",
                None,
                self._cache_set,
                cache,
            )
        for spec in config.filesystems:
            if spec.cache is not None:
                add(
                    Layer.BIND,
                    f"cache for {spec.label(config.prefix)}",
                    spec,
                    self._bind,
                    spec,
                )
        for spec in config.filesystems:
            if spec.encrypted:
                add(
                    Layer.CRYPT,
                    f"encryption for {spec.label(config.prefix)}",
                    spec,
                    self._crypt,
                    spec,
                )
        for spec in config.filesystems:
            add(
                Layer.FILESYSTEM,
                f"{spec.fs_type} file system {spec.label(config.prefix)}",
                spec,
                self._filesystem,
                spec,
            )
        for mp, spec in config.mount_points():
            add(Layer.MOUNT, f"mount {mp}", spec, self._mount, spec, mp)
        return steps

    def execute(self, goal: Goal) -> StackBuild:
        steps = self.plan(goal)
        log.info("%s: %d steps", goal.value, len(steps))
        for step in steps:
            try:
                with self.context.child(step.layer.value, step.description):
                    step.fn()
            except Exception as e:
                log.exception("%s failed, tearing down", step.description)
                self.release()
                raise BuildStepError(step.description, e) from e
            except BaseException:
                self.release()
                raise
        return self.build

    def release(self):
        """Undo everything this run built, most recent first."""
        for mp in reversed(self.build.mounts):
            try:
                self.teardown.unmount(mp)
            except Exception:
                log.exception("unmounting %s failed", mp)
        self.build.mounts.clear()
        paths = []
        for unit in reversed(self.build.units):
            if unit.state in (UnitState.BUILDING, UnitState.ACTIVE):
                unit.transition(UnitState.CLOSING)
            if unit.path is not None:
                paths.append(unit.path)
            else:
                # releasing the inputs releases whatever got built on them
                paths.extend(i.path for i in unit.inputs if i.path is not None)
        errors = self.teardown.unlock_all(paths)
        for error in errors:
            log.error("%s", error)
        for unit in self.build.units:
            if unit.state == UnitState.CLOSING:
                unit.transition(UnitState.CLOSED)

    # steps

    def _begin(self, kind: UnitKind, inputs, spec=None, **kw) -> StorageUnit:
        unit = StorageUnit.derived(kind, inputs, **kw)
        unit.transition(UnitState.BUILDING)
        self.build.units.append(unit)
        if spec is not None:
            spec.units.append(unit)
        return unit

    def _finish(self, unit: StorageUnit, path: str, spec=None):
        unit.path = path
        unit.transition(UnitState.ACTIVE)
        if spec is not None:
            spec.current_device = path

    def _top(self, spec: FileSystemSpec) -> StorageUnit:
        if spec.units:
            return spec.units[-1]
        return self.leaves[spec.devices[0]]

    def _raid_unit(self, devices, level, name, spec=None) -> StorageUnit:
        inputs = [self.leaves[uuid] for uuid in devices]
        unit = self._begin(UnitKind.RAID_ARRAY, inputs, spec, name=name)
        path = self.raid.build(
            name,
            level,
            [i.path for i in inputs],
            self.mode,
            self.config.hostname,
        )
        self._finish(unit, path, spec)
        return unit

    def _raid(self, spec: FileSystemSpec):
        self._raid_unit(
            spec.devices, spec.raid_level, spec.label(self.config.prefix), spec
        )

    def _cache_set(self, cache: CacheSpec):
        if cache.raid_level is not None:
            device_unit = self._raid_unit(
                cache.devices, cache.raid_level, f"{self.config.prefix}cache"
            )
        else:
            device_unit = self.leaves[cache.devices[0]]
        unit = StorageUnit(
            kind=UnitKind.CACHE_SET,
            identity=(UnitKind.CACHE_SET.value, cache.identity),
            inputs=[device_unit],
        )
        unit.transition(UnitState.BUILDING)
        self.build.units.append(unit)
        unit.cset_uuid = self.cache.build(
            device_unit.path, cache.bucket_size, self.mode
        )
        self._finish(unit, device_unit.path)
        self.cache_sets[cache.identity] = unit

    def _bind(self, spec: FileSystemSpec):
        cache_set = self.cache_sets[spec.cache.identity]
        backing = self._top(spec)
        unit = self._begin(UnitKind.BACKING_ATTACHMENT, [backing, cache_set], spec)
        path = self.cache.bind(backing.path, cache_set.cset_uuid, self.mode)
        backing_uuid = self.resolver.superblock_uuid(backing.path)
        if backing_uuid is not None:
            self.build.cache_bindings.bind(backing_uuid, cache_set.cset_uuid)
        self._finish(unit, path, spec)

    def _crypt(self, spec: FileSystemSpec):
        below = self._top(spec)
        unit = self._begin(UnitKind.ENCRYPTED_VOLUME, [below], spec)
        path = self.crypt.build(
            below.path,
            spec.label(),
            self.key_provider.get_key(),
            self.mode,
            self.build.mount_table,
        )
        unit.name = path.rsplit("/", 1)[-1]
        self._finish(unit, path, spec)

    def _filesystem(self, spec: FileSystemSpec):
        below = self._top(spec)
        unit = self._begin(UnitKind.FILESYSTEM_VOLUME, [below], spec)
        path = self.filesystem.build(
            spec,
            below.path,
            spec.label(self.config.prefix),
            self.mode,
            self.build.mount_table,
            self.rollback,
        )
        self._finish(unit, path, spec)

    def _mount(self, spec: FileSystemSpec, mount_point: str):
        where = mount_volume(
            self.host, spec, spec.current_device, self.config.target, mount_point
        )
        self.build.mounts.append(where)
