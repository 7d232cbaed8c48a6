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

import abc
import logging
from typing import Optional

from stcomp.errors import ConfigurationError

log = logging.getLogger("stcomp.keys")


class KeyProvider(abc.ABC):
    """Source of the LUKS key material for one invocation."""

    @abc.abstractmethod
    def get_key(self) -> bytes:
        pass

    def forget(self):
        pass


class StaticKeyProvider(KeyProvider):
    def __init__(self, key):
        if isinstance(key, str):
            key = key.encode("utf-8")
        self._key: Optional[bytes] = key

    def get_key(self) -> bytes:
        if not self._key:
            raise ConfigurationError("no key material available")
        return self._key

    def forget(self):
        self._key = None


class KeyFileProvider(KeyProvider):
    def __init__(self, path):
        self.path = path
        self._key: Optional[bytes] = None

    def get_key(self) -> bytes:
        if self._key is None:
            try:
                with open(self.path, "rb") as fp:
                    key = fp.read()
            except OSError as e:
                raise ConfigurationError(f"cannot read key file {self.path}: {e}")
            if not key:
                raise ConfigurationError(f"key file {self.path} is empty")
            log.debug("read %d bytes of key material from %s", len(key), self.path)
            self._key = key
        return self._key

    def forget(self):
        self._key = None
