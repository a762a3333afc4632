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

"""Python interface to Alpao deformable mirrors.

The mirror itself is controlled with :class:`asdk.mirror.DeformableMirror`.
This module only defines the exceptions shared by the whole package.
"""


class ASDKError(Exception):
    """Base class for pyasdk exceptions.
    """

    pass


class DeviceError(ASDKError):
    """Raised when the Alpao SDK reports a failure.

    The error code and message are the ones on the SDK error stack
    right after the failing call.  Errors detected by pyasdk itself,
    such as using a mirror that was already released, have an error
    code of zero.

    Attributes:
        code (int): error number reported by the SDK.
        message (str): description of the error.
    """

    def __init__(self, code: int, message: str) -> None:
        # Keep both on args so that the exception can be pickled,
        # e.g., when raised on the other side of a Pyro connection.
        super().__init__(code, message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return "ASDK error (%d): %s" % (self.code, self.message)


class InitialiseError(ASDKError):
    """Raised when the SDK fails to connect to a mirror.

    This happens when the SDK does not return a handle for a mirror,
    typically because the mirror is not connected, or the serial
    number or its configuration file is incorrect.  Since there is no
    handle, the SDK error stack is not used.
    """

    pass


class SizeError(ASDKError, ValueError):
    """Raised when the number of values does not match the mirror.

    This exception is raised before anything is sent to the mirror,
    when the length of the values does not match the number of
    actuators, or the number of patterns.
    """

    pass


class LibraryLoadError(ASDKError):
    """Raised when the loading of the Alpao SDK library fails.

    This exception is raised when the shared library or DLL fails to
    load, typically because it is not installed or is missing some
    required symbol.  It is chained with the exception that originated
    it like so::

    .. code-block:: python

        try:
            import asdk._wrappers.libasdk
        except Exception as e:
            raise asdk.LibraryLoadError(e) from e

    """

    pass
