#!/usr/bin/env python3

## Copyright (C) 2020 David Miguel Susano Pinto <carandraug@gmail.com>
##
## This file is part of pyasdk.
##
## pyasdk is free software: you can redistribute it and/or modify
## it under the terms of the GNU General Public License as published by
## the Free Software Foundation, either version 3 of the License, or
## (at your option) any later version.
##
## pyasdk is distributed in the hope that it will be useful,
## but WITHOUT ANY WARRANTY; without even the implied warranty of
## MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
## GNU General Public License for more details.
##
## You should have received a copy of the GNU General Public License
## along with pyasdk.  If not, see <http://www.gnu.org/licenses/>.

"""Interactive tests for hardware.

These need the Alpao SDK installed.  The SDK ships configuration
files for virtual mirrors which do not need any hardware, like so::

    >>> import asdk._utils
    >>> import asdk.testsuite.hardware
    >>> asdk._utils.set_config_dir("/path/to/alpao/config")
    >>> asdk.testsuite.hardware.check_virtual_mirror("VIRT103-104")
"""

import logging
import time
import typing

import numpy

import asdk
import asdk.mirror


_logger = logging.getLogger(__name__)


def test_mirror_actuators(dm, time_interval=0.5):
    """Iterate over all actuators of a deformable mirror.

    Args:
        dm (asdk.mirror.DeformableMirror): The mirror to test.
        time_interval (float): Number of seconds between trying each
            actuator.
    """
    base_value = 0.0
    data = numpy.full((dm.n_actuators), base_value)
    dm.send(data)

    time.sleep(time_interval)
    for new_value in [0.5, -0.5]:
        for i in range(dm.n_actuators):
            data[i] = new_value
            dm.send(data)
            time.sleep(time_interval)
            data[i] = base_value

    dm.send(data)


def check_virtual_mirror(
    serial_number: str, n_cycles: int = 3
) -> typing.List[str]:
    """Run the basic operations on a mirror, real or virtual.

    Every step raises on failure.  Parameters that are not available
    on the mirror are only logged.

    Returns:
        Name of the optional parameters not available.
    """
    unavailable = []

    for i in range(n_cycles):
        dm = asdk.mirror.DeformableMirror(serial_number)
        assert dm.is_open() and dm.n_actuators > 0
        dm.release()
        assert not dm.is_open() and dm.n_actuators == -1

    with asdk.mirror.DeformableMirror(serial_number) as dm:
        n_actuators = dm.n_actuators
        dm.send(numpy.zeros(n_actuators))
        dm.reset()
        dm.stop()

        patterns = numpy.concatenate(
            [
                numpy.zeros(n_actuators),
                numpy.full(n_actuators, 0.1),
                numpy.random.rand(n_actuators) * 0.05,
            ]
        )
        dm.send_pattern(patterns, 3, 2)
        dm.stop()

        assert dm.get("NbOfActuator") == n_actuators
        for name in ["VersionInfo", "UseException"]:
            try:
                _logger.info("%s: %f", name, dm.get(name))
            except asdk.DeviceError as e:
                _logger.info("%s not available: %s", name, e)
                unavailable.append(name)

        try:
            original = dm.get("UseException")
            dm.set("UseException", 0.0)
            assert dm.get("UseException") == 0.0
            dm.set("UseException", original)
        except asdk.DeviceError as e:
            _logger.info("setting UseException not available: %s", e)
            unavailable.append("UseException")

        try:
            dm.get("NonExistentParameter")
        except asdk.DeviceError as e:
            _logger.info("unknown parameter raised %s", e)
        else:
            raise AssertionError("unknown parameter did not raise")

    for bad_serial in ["INVALID_SERIAL", ""]:
        try:
            asdk.mirror.DeformableMirror(bad_serial)
        except (asdk.InitialiseError, asdk.DeviceError):
            pass
        else:
            raise AssertionError("opened mirror '%s'" % bad_serial)

    return unavailable
