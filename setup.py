#!/usr/bin/env python3
# -*- mode: python; -*-
#
# Copyright 2026 Canonical, Ltd.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as
# published by the Free Software Foundation, either version 3 of the
# License, or (at your option) any later version.
#
# This package is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <http://www.gnu.org/licenses/>.

"""
stcomp
======
Storage stack composer: RAID, bcache, LUKS and file systems on partitions
"""

from setuptools import setup, find_packages

import os
import sys

with open(os.path.join(os.path.dirname(__file__),
                       'stcompcore', '__init__.py')) as init:
    ns = {}
    exec(init.read(), ns)
    version = ns['__version__']

if sys.argv[-1] == 'clean':
    print("Cleaning up ...")
    os.system('rm -rf storagecomposer.egg-info build dist')
    sys.exit()

setup(name='storagecomposer',
      version=version,
      description="Storage stack composer",
      long_description=__doc__,
      author='Canonical Engineering',
      author_email='ubuntu-dev@lists.ubuntu.com',
      license="AGPLv3+",
      python_requires='>=3.8',
      packages=find_packages(exclude=["tests"]),
      install_requires=[
          'attrs',
          'jsonschema',
          'pyudev',
          'PyYAML',
      ],
      extras_require={
          'test': [
              'parameterized',
              'pytest',
          ],
      },
      entry_points={
          'console_scripts': [
              'stcomp = stcomp.cmd.compose:main',
          ],
      },
      data_files=[],
      )
