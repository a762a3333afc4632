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

"""Alpao deformable mirrors.
"""

import ctypes
import logging
import numbers
import typing
import warnings

import numpy

import asdk

try:
    import asdk._wrappers.libasdk as libasdk
except Exception as e:
    raise asdk.LibraryLoadError(e) from e


_logger = logging.getLogger(__name__)

# Size of the buffer for the messages in the SDK error stack.
_ERROR_MESSAGE_LENGTH = 512

# Data type of the values passed to the SDK (Scalar in alpao's headers).
_SCALAR_DTYPE = numpy.dtype(libasdk.Scalar)


class DeformableMirror:
    """Alpao deformable mirror.

    The connection to the mirror is opened on construction and must
    be closed with :meth:`release` or :meth:`close`.  The mirror is
    also a context manager, which is the recommended usage::

        with DeformableMirror("BAL123") as dm:
            dm.send(numpy.zeros(dm.n_actuators))

    Once released, all methods raise :exc:`asdk.DeviceError` without
    calling the SDK.

    There is no locking.  Calls on the same mirror from multiple
    threads must be serialised by the caller, see
    :class:`asdk.device_server.SerializedMirror`.  Different mirrors
    can be used in different threads.

    Args:
        serial_number: the serial number of the deformable mirror,
            something like "BIL103".  The SDK uses it to find the
            mirror configuration file.

    Raises:
        asdk.InitialiseError: if the SDK fails to return a mirror.
        asdk.DeviceError: if the number of actuators can't be read.
    """

    def __init__(self, serial_number: str) -> None:
        self._serial_number = serial_number
        self._handle: typing.Optional[libasdk.pDM] = None
        self._n_actuators: int = -1

        handle = libasdk.Init(serial_number.encode())
        if not handle:
            raise asdk.InitialiseError(
                "failed to initialise mirror '%s'" % serial_number
            )
        self._handle = handle

        try:
            n_actuators = int(self.get("NbOfActuator"))
            if n_actuators <= 0:
                raise asdk.InitialiseError(
                    "mirror '%s' reports %d actuators"
                    % (serial_number, n_actuators)
                )
        except Exception:
            self._release_after_failure()
            raise
        self._n_actuators = n_actuators
        _logger.debug(
            "opened mirror '%s' with %d actuators",
            serial_number,
            n_actuators,
        )

    def __repr__(self) -> str:
        return "<%s serial_number=%r %s>" % (
            type(self).__name__,
            self._serial_number,
            "open" if self.is_open() else "closed",
        )

    def __enter__(self) -> "DeformableMirror":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __del__(self):
        if getattr(self, "_handle", None):
            warnings.warn("unreleased mirror %r" % self, ResourceWarning)
            try:
                self.release()
            except asdk.DeviceError as e:
                warnings.warn(str(e), RuntimeWarning)

    def __getitem__(self, name: str) -> float:
        return self.get(name)

    def __setitem__(self, name: str, value) -> None:
        self.set(name, value)

    @property
    def serial_number(self) -> str:
        return self._serial_number

    @property
    def n_actuators(self) -> int:
        """Number of actuators, or -1 after the mirror is released."""
        return self._n_actuators

    def is_open(self) -> bool:
        return bool(self._handle)

    def _check_open(self) -> None:
        if not self.is_open():
            raise asdk.DeviceError(0, "DM is not open")

    def _last_error(self) -> asdk.DeviceError:
        """Get the last error from the Alpao SDK error stack.

        This must be called right after the failing function, before
        anything else makes use of the SDK, otherwise the error on the
        stack will be some other.
        """
        code = libasdk.UInt(0)
        buffer = ctypes.create_string_buffer(_ERROR_MESSAGE_LENGTH)
        libasdk.GetLastError(
            ctypes.pointer(code), buffer, _ERROR_MESSAGE_LENGTH
        )
        buffer[_ERROR_MESSAGE_LENGTH - 1] = b"\0"
        message = buffer.value.decode(errors="replace")
        if not message:
            message = "no error message on the SDK error stack"
        return asdk.DeviceError(code.value, message)

    def _raise_if_error(self, status: int) -> None:
        if status != libasdk.SUCCESS:
            raise self._last_error()

    def _release_after_failure(self) -> None:
        # The error that made us release is the one worth reporting.
        try:
            self.release()
        except asdk.DeviceError as e:
            _logger.warning(
                "failed to release mirror '%s': %s", self._serial_number, e
            )

    def release(self) -> None:
        """Release the mirror.

        The mirror is marked as released even if the SDK fails to
        release it, in which case :exc:`asdk.DeviceError` is raised
        afterwards.

        Raises:
            asdk.DeviceError: if the mirror is not open or the SDK
                fails to release it.
        """
        self._check_open()
        handle = self._handle
        self._handle = None
        self._n_actuators = -1
        status = libasdk.Release(handle)
        self._raise_if_error(status)
        _logger.debug("released mirror '%s'", self._serial_number)

    def close(self) -> None:
        """Release the mirror if it is still open."""
        if self.is_open():
            self.release()

    def send(self, values: typing.Sequence[float]) -> None:
        """Set the value of all actuators.

        Args:
            values: one value per actuator.

        Raises:
            asdk.SizeError: if the number of values differs from the
                number of actuators.
        """
        self._check_open()
        values = numpy.ascontiguousarray(values, dtype=_SCALAR_DTYPE)
        if values.ndim != 1 or values.shape[0] != self._n_actuators:
            raise asdk.SizeError(
                "number of values '%d' differs from number of actuators '%d'"
                % (values.size, self._n_actuators)
            )
        status = libasdk.Send(
            self._handle, values.ctypes.data_as(libasdk.Scalar_p)
        )
        self._raise_if_error(status)

    def send_pattern(
        self,
        values: typing.Sequence[float],
        n_patterns: int,
        n_repeats: int = 1,
    ) -> None:
        """Queue a sequence of patterns for playback.

        The SDK returns as soon as the patterns are queued.  Use
        :meth:`stop` to stop the playback.

        Args:
            values: the patterns, one after the other.  Either a flat
                sequence of length `n_patterns` times the number of
                actuators, or a 2 dimensional array with one pattern
                per row.
            n_patterns: number of patterns in `values`.
            n_repeats: number of times to play the whole sequence.

        Raises:
            asdk.SizeError: if the number of values is not the number
                of actuators times `n_patterns`.
        """
        self._check_open()
        values = numpy.ascontiguousarray(values, dtype=_SCALAR_DTYPE).ravel()
        if n_patterns <= 0 or values.size != n_patterns * self._n_actuators:
            raise asdk.SizeError(
                "number of values '%d' is not %d patterns of %d actuators"
                % (values.size, n_patterns, self._n_actuators)
            )
        if n_repeats < 0:
            raise ValueError("number of repeats must be non-negative")
        status = libasdk.SendPattern(
            self._handle,
            values.ctypes.data_as(libasdk.Scalar_p),
            n_patterns,
            n_repeats,
        )
        self._raise_if_error(status)

    def reset(self) -> None:
        """Reset the actuators to their default values."""
        self._check_open()
        status = libasdk.Reset(self._handle)
        self._raise_if_error(status)

    def stop(self) -> None:
        """Stop the playback of queued patterns."""
        self._check_open()
        status = libasdk.Stop(self._handle)
        self._raise_if_error(status)

    def get(self, name: str) -> float:
        """Get the value of a mirror parameter.

        The valid parameter names are defined by the SDK, e.g.,
        "NbOfActuator", "VersionInfo", or "UseException".  Unknown
        names raise :exc:`asdk.DeviceError`.
        """
        self._check_open()
        value = libasdk.Scalar()
        status = libasdk.Get(self._handle, name.encode(), ctypes.pointer(value))
        self._raise_if_error(status)
        return value.value

    def get_vector(self, name: str) -> numpy.ndarray:
        """Get the value of a vector parameter."""
        self._check_open()
        data = libasdk.Scalar_p()
        size = libasdk.UInt(0)
        status = libasdk.GetVector(
            self._handle,
            name.encode(),
            ctypes.pointer(data),
            ctypes.pointer(size),
        )
        self._raise_if_error(status)
        # The vector is owned by the SDK and must be freed after
        # copying, even if the copy fails.
        try:
            if size.value and data:
                values = numpy.array(
                    numpy.ctypeslib.as_array(data, shape=(size.value,)),
                    dtype=_SCALAR_DTYPE,
                )
            else:
                values = numpy.empty((0,), dtype=_SCALAR_DTYPE)
        finally:
            status = libasdk.FreeVector(ctypes.pointer(data))
        self._raise_if_error(status)
        return values

    def get_string(self, name: str) -> str:
        """Get the value of a string parameter."""
        self._check_open()
        text = libasdk.CStr()
        status = libasdk.GetString(
            self._handle, name.encode(), ctypes.pointer(text)
        )
        self._raise_if_error(status)
        try:
            value = (text.value or b"").decode(errors="replace")
        finally:
            status = libasdk.FreeString(ctypes.pointer(text))
        self._raise_if_error(status)
        return value

    def set_scalar(self, name: str, value: float) -> None:
        self._check_open()
        status = libasdk.Set(self._handle, name.encode(), float(value))
        self._raise_if_error(status)

    def set_vector(self, name: str, values: typing.Sequence[float]) -> None:
        self._check_open()
        # Always a copy, even if values is already of the right type.
        values = numpy.array(values, dtype=_SCALAR_DTYPE).ravel()
        status = libasdk.SetVector(
            self._handle,
            name.encode(),
            values.ctypes.data_as(libasdk.Scalar_p),
            values.size,
        )
        self._raise_if_error(status)

    def set_string(self, name: str, value: str) -> None:
        self._check_open()
        status = libasdk.SetString(self._handle, name.encode(), value.encode())
        self._raise_if_error(status)

    def set(
        self,
        name: str,
        value: typing.Union[float, typing.Sequence[float], str],
    ) -> None:
        """Set the value of a mirror parameter.

        Strings are set with :meth:`set_string`, real numbers with
        :meth:`set_scalar`, and anything else is handled as a vector
        by :meth:`set_vector`.  There is no validation of the
        parameter, that is done by the SDK.
        """
        if isinstance(value, str):
            self.set_string(name, value)
        elif isinstance(value, numbers.Real):
            self.set_scalar(name, value)
        else:
            self.set_vector(name, value)
