#!/usr/bin/env python3

## Copyright (C) 2017 David Pinto <david.pinto@bioch.ox.ac.uk>
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

"""Mock of the Alpao SDK shared library and tools for patching ctypes.

:mod:`asdk._wrappers.libasdk` requires the Alpao SDK to be installed
at import time.  No machine running the tests will have it, so this
module provides a mock for all C functions wrapped by pyasdk.  The
:func:`mock_shared_libraries` context manager patches
:class:`ctypes.CDLL` so that the wrapper can be imported.  Like so::

    >>> import asdk.testsuite.libs
    >>> with asdk.testsuite.libs.mock_shared_libraries():
    ...     import asdk._wrappers.libasdk
    >>> asdk._wrappers.libasdk.Init(b"BAX000")
    Traceback (most recent call last):
    ...
    NotImplementedError: call of mock function not yet implemented

The mocked functions do nothing until implemented.  The
:class:`VirtualSDK` class implements them all with an in-process
virtual mirror::

    >>> sdk = asdk.testsuite.libs.VirtualSDK({"BAX000": 97})
    >>> sdk.attach(asdk._wrappers.libasdk)
    >>> bool(asdk._wrappers.libasdk.Init(b"BAX000"))
    True
"""

import contextlib
import ctypes
import inspect
import os
import sys
import typing
import unittest.mock

import numpy


SUCCESS = 0
FAILURE = -1

# Error codes used by the virtual SDK.
ERR_UNKNOWN_SERIAL = 3
ERR_INVALID_HANDLE = 5
ERR_UNKNOWN_PARAMETER = 11
ERR_READ_ONLY_PARAMETER = 12


class MockFuncPtr:
    """A mock for a C function.

    To identify where it is called unintentionally, this mock will raise
    :exc:`NotImplementedError` if it is called.  To make it callable,
    replace the :meth:`_call` method like so::

      >>> func = MockFuncPtr()
      >>> func()
      Traceback (most recent call last):
      ...
      NotImplementedError: call of mock function not yet implemented
      >>> func._call = lambda : ctypes.c_int(1)
      >>> func()
      c_int(1)

    The reason to replace `_call` instead of `__call__` is that
    implicit invocations of special methods are `not guaranteed to work
    correctly when defined in an object instance
    <https://docs.python.org/3/reference/datamodel.html#special-method-lookup>`_.

    Arguments are passed as they are, there is no conversion based on
    `argtypes` and `restype`.
    """

    def __init__(self):
        self.argtypes = None
        self.restype = ctypes.c_int

    def _call(self, *args, **kwargs):
        raise NotImplementedError("call of mock function not yet implemented")

    def __call__(self, *args, **kwargs):
        return self._call(*args, **kwargs)


class MockSharedLib:
    """Base class for mock shared libraries.

    Subclasses must list the name of functions from the library it mocks
    in :attr:`functions`.

    Attributes:
        libs (list): list of library names (as passed to
            :class:`ctypes.CDLL`) that this class can mock.
        functions (list): list of of function names from the library to
            be mocked.
    """

    libs: typing.List[str] = []
    functions: typing.List[str] = []

    def __init__(self):
        for fname in self.functions:
            setattr(self, fname, MockFuncPtr())


class MockLibasdk(MockSharedLib):
    """Mock Alpao's SDK for asdk._wrappers.libasdk.
    """

    libs = ["libasdk.so", "ASDK"]
    functions = [
        "asdkFreeString",
        "asdkFreeVector",
        "asdkGet",
        "asdkGetLastError",
        "asdkGetString",
        "asdkGetVector",
        "asdkInit",
        "asdkRelease",
        "asdkReset",
        "asdkSend",
        "asdkSendPattern",
        "asdkSet",
        "asdkSetString",
        "asdkSetVector",
        "asdkStop",
    ]


## Create a map of library names (as they would be named when
## constructing CDLL in any supported OS), to the mock shared library.
_lib_to_mock = dict()
for _, _cls in inspect.getmembers(sys.modules[__name__], inspect.isclass):
    if issubclass(_cls, MockSharedLib):
        for _lib in _cls.libs:
            _lib_to_mock[_lib] = _cls


class CDLL(ctypes.CDLL):
    """A replacement for ctypes.CDLL that will link our mock libraries.
    """

    def __init__(self, name, *args, **kwargs):
        if _lib_to_mock.get(name) is not None:
            self._name = name
            self._handle = _lib_to_mock[name]()
        else:
            super().__init__(name, *args, **kwargs)

    def __getattr__(self, name):
        if isinstance(self._handle, MockSharedLib):
            return getattr(self._handle, name)
        else:
            return super().__getattr__(name)


@contextlib.contextmanager
def mock_shared_libraries():
    """Patch ctypes so that shared libraries are replaced by our mocks.

    Only the libraries loaded while in the context are mocked, modules
    imported in the context keep the mock afterwards.
    """
    with contextlib.ExitStack() as stack:
        stack.enter_context(unittest.mock.patch.dict(os.environ))
        os.environ.pop("ASDK_LIBRARY", None)
        stack.enter_context(unittest.mock.patch("ctypes.CDLL", CDLL))
        stack.enter_context(
            unittest.mock.patch("ctypes.WinDLL", CDLL, create=True)
        )
        yield


class VirtualMirror:
    """State of one mirror of the :class:`VirtualSDK`.

    Attributes:
        current (numpy.ndarray): last pattern sent.
        queued (tuple): last patterns queued for playback and the
            number of repeats, or `None`.
        playing (bool): whether queued patterns are being played.
    """

    def __init__(self, serial_number: str, n_actuators: int) -> None:
        self.serial_number = serial_number
        self.n_actuators = n_actuators
        self.parameters = {
            "NbOfActuator": float(n_actuators),
            "UseException": 0.0,
            "VersionInfo": 3.0402,
            "TriggerIn": 0.0,
        }
        self.read_only = {"NbOfActuator", "VersionInfo"}
        self.vectors = {"mcff": numpy.zeros(n_actuators)}
        self.strings = {"CfgPath": "", "SerialNumber": serial_number}
        self.current = numpy.zeros(n_actuators)
        self.queued: typing.Optional[typing.Tuple[numpy.ndarray, int]] = None
        self.playing = False


class VirtualSDK:
    """An in-process implementation of the Alpao SDK functions.

    After :meth:`attach`, the mock functions of the wrapper module call
    this instance.  Arguments are expected as they are passed by
    :class:`asdk.mirror.DeformableMirror`, i.e., bytes for strings and
    ctypes pointers for output arguments.

    Args:
        mirrors: map of serial numbers to number of actuators of the
            mirrors that can be initialised.

    Attributes:
        calls (list): names of the SDK functions called, in order.
        mirrors (dict): the :class:`VirtualMirror` currently open, by
            serial number.
    """

    def __init__(self, mirrors: typing.Mapping[str, int]) -> None:
        self._available = dict(mirrors)
        self._lib = None
        self._handles: typing.Dict[int, typing.Tuple[ctypes.Structure, VirtualMirror]] = {}
        self._allocated: typing.Dict[int, ctypes.Array] = {}
        self._error: typing.Tuple[int, str] = (0, "")
        self._failures: typing.Dict[str, typing.Tuple[int, str]] = {}
        self.calls: typing.List[str] = []
        self.mirrors: typing.Dict[str, VirtualMirror] = {}

    def attach(self, lib) -> None:
        """Make the mocked functions of the wrapper module `lib` call us."""
        self._lib = lib
        for name, method in self._implementations().items():
            getattr(lib.SDK, name)._call = self._recorded(name, method)

    def detach(self) -> None:
        for name in self._implementations():
            func = getattr(self._lib.SDK, name)
            if "_call" in vars(func):
                del func._call

    @property
    def n_allocated(self) -> int:
        """Number of vectors and strings not yet freed."""
        return len(self._allocated)

    def fail_next(self, name: str, code: int, message: str) -> None:
        """Make the next call to the function `name` fail."""
        self._failures[name] = (code, message)

    def _implementations(self) -> typing.Dict[str, typing.Callable]:
        return {
            "asdkFreeString": self.free_string,
            "asdkFreeVector": self.free_vector,
            "asdkGet": self.get,
            "asdkGetLastError": self.get_last_error,
            "asdkGetString": self.get_string,
            "asdkGetVector": self.get_vector,
            "asdkInit": self.init,
            "asdkRelease": self.release,
            "asdkReset": self.reset,
            "asdkSend": self.send,
            "asdkSendPattern": self.send_pattern,
            "asdkSet": self.set,
            "asdkSetString": self.set_string,
            "asdkSetVector": self.set_vector,
            "asdkStop": self.stop,
        }

    def _recorded(self, name, method):
        def call(*args):
            self.calls.append(name)
            if name in self._failures:
                code, message = self._failures.pop(name)
                self._set_error(code, message)
                return self._lib.pDM() if name == "asdkInit" else FAILURE
            return method(*args)

        return call

    def _set_error(self, code: int, message: str) -> int:
        self._error = (code, message)
        return FAILURE

    def _mirror(self, handle) -> typing.Optional[VirtualMirror]:
        if not handle:
            return None
        entry = self._handles.get(ctypes.addressof(handle.contents))
        return None if entry is None else entry[1]

    def _invalid_handle(self) -> int:
        return self._set_error(ERR_INVALID_HANDLE, "Invalid DM handle")

    def _unknown_parameter(self, name: str) -> int:
        return self._set_error(
            ERR_UNKNOWN_PARAMETER, "Parameter not found: %s" % name
        )

    @staticmethod
    def _address(pointer_to_pointer) -> int:
        return ctypes.cast(
            pointer_to_pointer, ctypes.POINTER(ctypes.c_void_p)
        )[0]

    def init(self, serial_number: bytes):
        serial_number = serial_number.decode()
        if serial_number not in self._available:
            self._set_error(
                ERR_UNKNOWN_SERIAL,
                "Cannot open configuration file for '%s'" % serial_number,
            )
            return self._lib.pDM()
        dm = self._lib.DM()
        mirror = VirtualMirror(serial_number, self._available[serial_number])
        self._handles[ctypes.addressof(dm)] = (dm, mirror)
        self.mirrors[serial_number] = mirror
        return ctypes.pointer(dm)

    def release(self, handle) -> int:
        mirror = self._mirror(handle)
        if mirror is None:
            return self._invalid_handle()
        del self._handles[ctypes.addressof(handle.contents)]
        if self.mirrors.get(mirror.serial_number) is mirror:
            del self.mirrors[mirror.serial_number]
        return SUCCESS

    def send(self, handle, values) -> int:
        mirror = self._mirror(handle)
        if mirror is None:
            return self._invalid_handle()
        mirror.current = numpy.ctypeslib.as_array(
            values, shape=(mirror.n_actuators,)
        ).copy()
        mirror.playing = False
        return SUCCESS

    def send_pattern(self, handle, values, n_patterns, n_repeats) -> int:
        mirror = self._mirror(handle)
        if mirror is None:
            return self._invalid_handle()
        patterns = numpy.ctypeslib.as_array(
            values, shape=(n_patterns, mirror.n_actuators)
        ).copy()
        mirror.queued = (patterns, n_repeats)
        mirror.playing = True
        return SUCCESS

    def reset(self, handle) -> int:
        mirror = self._mirror(handle)
        if mirror is None:
            return self._invalid_handle()
        mirror.current = numpy.zeros(mirror.n_actuators)
        mirror.playing = False
        return SUCCESS

    def stop(self, handle) -> int:
        mirror = self._mirror(handle)
        if mirror is None:
            return self._invalid_handle()
        mirror.playing = False
        return SUCCESS

    def get(self, handle, name: bytes, value) -> int:
        mirror = self._mirror(handle)
        if mirror is None:
            return self._invalid_handle()
        name = name.decode()
        if name not in mirror.parameters:
            return self._unknown_parameter(name)
        value.contents.value = mirror.parameters[name]
        return SUCCESS

    def get_vector(self, handle, name: bytes, data, size) -> int:
        mirror = self._mirror(handle)
        if mirror is None:
            return self._invalid_handle()
        name = name.decode()
        if name not in mirror.vectors:
            return self._unknown_parameter(name)
        values = mirror.vectors[name]
        array = (self._lib.Scalar * len(values))(*values)
        self._allocated[ctypes.addressof(array)] = array
        data[0] = ctypes.cast(array, self._lib.Scalar_p)
        size.contents.value = len(values)
        return SUCCESS

    def free_vector(self, data) -> int:
        self._allocated.pop(self._address(data), None)
        data[0] = self._lib.Scalar_p()
        return SUCCESS

    def get_string(self, handle, name: bytes, text) -> int:
        mirror = self._mirror(handle)
        if mirror is None:
            return self._invalid_handle()
        name = name.decode()
        if name not in mirror.strings:
            return self._unknown_parameter(name)
        buffer = ctypes.create_string_buffer(mirror.strings[name].encode())
        self._allocated[ctypes.addressof(buffer)] = buffer
        text[0] = ctypes.cast(buffer, ctypes.c_char_p)
        return SUCCESS

    def free_string(self, text) -> int:
        self._allocated.pop(self._address(text), None)
        text[0] = ctypes.c_char_p()
        return SUCCESS

    def set(self, handle, name: bytes, value: float) -> int:
        mirror = self._mirror(handle)
        if mirror is None:
            return self._invalid_handle()
        name = name.decode()
        if name not in mirror.parameters:
            return self._unknown_parameter(name)
        elif name in mirror.read_only:
            return self._set_error(
                ERR_READ_ONLY_PARAMETER, "Parameter is read-only: %s" % name
            )
        mirror.parameters[name] = float(value)
        return SUCCESS

    def set_vector(self, handle, name: bytes, values, size: int) -> int:
        mirror = self._mirror(handle)
        if mirror is None:
            return self._invalid_handle()
        name = name.decode()
        if name not in mirror.vectors:
            return self._unknown_parameter(name)
        if size:
            mirror.vectors[name] = numpy.ctypeslib.as_array(
                values, shape=(size,)
            ).copy()
        else:
            mirror.vectors[name] = numpy.zeros((0,))
        return SUCCESS

    def set_string(self, handle, name: bytes, value: bytes) -> int:
        mirror = self._mirror(handle)
        if mirror is None:
            return self._invalid_handle()
        name = name.decode()
        if name not in mirror.strings:
            return self._unknown_parameter(name)
        mirror.strings[name] = value.decode()
        return SUCCESS

    def get_last_error(self, code, message, size: int) -> int:
        error_code, error_message = self._error
        self._error = (0, "")
        code.contents.value = error_code
        message.value = error_message.encode()[: size - 1]
        return SUCCESS
