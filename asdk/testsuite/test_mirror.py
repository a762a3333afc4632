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

"""Test the deformable mirror against a virtual SDK.

The Alpao SDK is replaced by :class:`asdk.testsuite.libs.VirtualSDK`
so these tests check that the right SDK functions are called, and
that errors are translated, but not the SDK itself.  For tests on
actual hardware, see :mod:`asdk.testsuite.hardware`.
"""

import ctypes
import pickle
import unittest
import unittest.mock

import numpy

import asdk
import asdk.testsuite.libs as libs

with libs.mock_shared_libraries():
    import asdk._wrappers.libasdk as libasdk
    import asdk.mirror


SERIAL = "BAX000"
N_ACTUATORS = 10


class MirrorTestCase(unittest.TestCase):
    """Base class for test cases with an open mirror.

    Sets up the `sdk` and `dm` properties.  `sdk.calls` is cleared
    after opening the mirror.
    """

    def setUp(self):
        self.sdk = libs.VirtualSDK({SERIAL: N_ACTUATORS})
        self.sdk.attach(libasdk)
        self.addCleanup(self.sdk.detach)
        self.dm = asdk.mirror.DeformableMirror(SERIAL)
        self.addCleanup(self.dm.close)
        self.sdk.calls.clear()

    @property
    def virtual_mirror(self) -> libs.VirtualMirror:
        return self.sdk.mirrors[SERIAL]


class TestOpen(unittest.TestCase):
    def setUp(self):
        self.sdk = libs.VirtualSDK({SERIAL: N_ACTUATORS})
        self.sdk.attach(libasdk)
        self.addCleanup(self.sdk.detach)

    def test_open(self):
        dm = asdk.mirror.DeformableMirror(SERIAL)
        self.addCleanup(dm.close)
        self.assertTrue(dm.is_open())
        self.assertIsInstance(dm.n_actuators, int)
        self.assertEqual(dm.n_actuators, N_ACTUATORS)
        self.assertEqual(dm.serial_number, SERIAL)
        self.assertEqual(self.sdk.calls, ["asdkInit", "asdkGet"])

    def test_invalid_serial_number(self):
        for serial_number in ["INVALID_SERIAL", ""]:
            with self.subTest(serial_number=serial_number):
                with self.assertRaises(asdk.InitialiseError):
                    asdk.mirror.DeformableMirror(serial_number)
        # A NULL handle is not an SDK error, nothing to get from the
        # error stack.
        self.assertNotIn("asdkGetLastError", self.sdk.calls)

    def test_release_when_number_of_actuators_fails(self):
        self.sdk.fail_next("asdkGet", 42, "no such parameter")
        with self.assertRaises(asdk.DeviceError) as cm:
            asdk.mirror.DeformableMirror(SERIAL)
        self.assertEqual(cm.exception.code, 42)
        self.assertEqual(cm.exception.message, "no such parameter")
        self.assertEqual(
            self.sdk.calls,
            ["asdkInit", "asdkGet", "asdkGetLastError", "asdkRelease"],
        )
        self.assertEqual(self.sdk.mirrors, {})

    def test_original_error_when_release_also_fails(self):
        self.sdk.fail_next("asdkGet", 42, "no such parameter")
        self.sdk.fail_next("asdkRelease", 7, "lost connection")
        with self.assertLogs("asdk.mirror", level="WARNING") as logs:
            with self.assertRaises(asdk.DeviceError) as cm:
                asdk.mirror.DeformableMirror(SERIAL)
        self.assertEqual(cm.exception.code, 42)
        self.assertIn("lost connection", logs.output[0])

    def test_mirror_without_actuators(self):
        sdk = libs.VirtualSDK({"BAX001": 0})
        sdk.attach(libasdk)
        with self.assertRaises(asdk.InitialiseError):
            asdk.mirror.DeformableMirror("BAX001")
        self.assertIn("asdkRelease", sdk.calls)
        self.assertEqual(sdk.mirrors, {})

    def test_multiple_open_and_release(self):
        for i in range(3):
            dm = asdk.mirror.DeformableMirror(SERIAL)
            self.assertTrue(dm.is_open())
            self.assertEqual(dm.n_actuators, N_ACTUATORS)
            dm.release()
            self.assertFalse(dm.is_open())
            self.assertEqual(self.sdk.mirrors, {})

    def test_context_manager(self):
        with asdk.mirror.DeformableMirror(SERIAL) as dm:
            self.assertTrue(dm.is_open())
        self.assertFalse(dm.is_open())
        self.assertEqual(self.sdk.mirrors, {})

    def test_context_manager_releases_on_error(self):
        with self.assertRaises(RuntimeError):
            with asdk.mirror.DeformableMirror(SERIAL) as dm:
                raise RuntimeError("user code failed")
        self.assertFalse(dm.is_open())
        self.assertEqual(self.sdk.mirrors, {})

    def test_release_on_garbage_collection(self):
        dm = asdk.mirror.DeformableMirror(SERIAL)
        with self.assertWarns(ResourceWarning):
            del dm
        self.assertEqual(self.sdk.calls[-1], "asdkRelease")
        self.assertEqual(self.sdk.mirrors, {})


class TestRelease(MirrorTestCase):
    def test_release(self):
        self.dm.release()
        self.assertFalse(self.dm.is_open())
        self.assertEqual(self.dm.n_actuators, -1)
        self.assertEqual(self.sdk.mirrors, {})

    def test_released_even_if_sdk_fails(self):
        self.sdk.fail_next("asdkRelease", 7, "lost connection")
        with self.assertRaises(asdk.DeviceError) as cm:
            self.dm.release()
        self.assertEqual(cm.exception.code, 7)
        self.assertFalse(self.dm.is_open())
        self.assertEqual(self.dm.n_actuators, -1)

    def test_release_twice(self):
        self.dm.release()
        with self.assertRaises(asdk.DeviceError) as cm:
            self.dm.release()
        self.assertEqual(cm.exception.code, 0)
        self.assertEqual(self.sdk.calls, ["asdkRelease"])

    def test_close_twice(self):
        self.dm.close()
        self.dm.close()
        self.assertFalse(self.dm.is_open())
        self.assertEqual(self.sdk.calls, ["asdkRelease"])

    def test_repr(self):
        self.assertIn("open", repr(self.dm))
        self.dm.release()
        self.assertIn("closed", repr(self.dm))


class TestClosedMirror(MirrorTestCase):
    def setUp(self):
        super().setUp()
        self.dm.release()
        self.sdk.calls.clear()

    def test_operations_fail_without_calling_sdk(self):
        operations = {
            "send": lambda: self.dm.send(numpy.zeros(N_ACTUATORS)),
            "send_pattern": lambda: self.dm.send_pattern(
                numpy.zeros(N_ACTUATORS), 1
            ),
            "reset": self.dm.reset,
            "stop": self.dm.stop,
            "get": lambda: self.dm.get("NbOfActuator"),
            "get_vector": lambda: self.dm.get_vector("mcff"),
            "get_string": lambda: self.dm.get_string("CfgPath"),
            "set": lambda: self.dm.set("UseException", 0.0),
            "set_vector": lambda: self.dm.set_vector("mcff", [0.0]),
            "set_string": lambda: self.dm.set_string("CfgPath", "/tmp"),
            "getitem": lambda: self.dm["NbOfActuator"],
            "release": self.dm.release,
        }
        for name, operation in operations.items():
            with self.subTest(operation=name):
                with self.assertRaises(asdk.DeviceError) as cm:
                    operation()
                self.assertEqual(cm.exception.code, 0)
                self.assertEqual(cm.exception.message, "DM is not open")
        self.assertEqual(self.sdk.calls, [])

    def test_send_wrong_size_when_closed(self):
        # The mirror being closed is reported before the size.
        with self.assertRaises(asdk.DeviceError):
            self.dm.send(numpy.zeros(3))


class TestSend(MirrorTestCase):
    def test_send(self):
        values = numpy.linspace(-1.0, 1.0, N_ACTUATORS)
        self.dm.send(values)
        numpy.testing.assert_array_equal(self.virtual_mirror.current, values)

    def test_send_other_types(self):
        for values in [
            [0] * N_ACTUATORS,
            numpy.full(N_ACTUATORS, 0.5, dtype=numpy.float32),
            numpy.arange(N_ACTUATORS),
            tuple(range(N_ACTUATORS)),
        ]:
            with self.subTest(values=values):
                self.dm.send(values)
                numpy.testing.assert_array_equal(
                    self.virtual_mirror.current, numpy.asarray(values)
                )

    def test_float64_is_not_copied(self):
        values = numpy.zeros(N_ACTUATORS)
        with unittest.mock.patch.object(
            libasdk, "Send", return_value=libasdk.SUCCESS
        ) as send:
            self.dm.send(values)
        pointer = send.call_args[0][1]
        self.assertEqual(
            ctypes.cast(pointer, ctypes.c_void_p).value, values.ctypes.data
        )

    def test_wrong_size(self):
        with unittest.mock.patch.object(libasdk, "Send") as send:
            for n in [N_ACTUATORS - 1, N_ACTUATORS + 1, 0]:
                with self.subTest(n=n):
                    with self.assertRaises(asdk.SizeError):
                        self.dm.send(numpy.zeros(n))
            with self.assertRaises(asdk.SizeError):
                self.dm.send(numpy.zeros((1, N_ACTUATORS)))
        send.assert_not_called()

    def test_size_error_is_value_error(self):
        with self.assertRaises(ValueError):
            self.dm.send([0.0])

    def test_device_error(self):
        self.sdk.fail_next("asdkSend", 20, "timeout")
        with self.assertRaises(asdk.DeviceError) as cm:
            self.dm.send(numpy.zeros(N_ACTUATORS))
        self.assertEqual(cm.exception.code, 20)
        self.assertEqual(cm.exception.message, "timeout")
        self.assertTrue(self.dm.is_open())

    def test_send_reset_and_stop(self):
        self.dm.send(numpy.zeros(self.dm.n_actuators))
        self.dm.reset()
        self.dm.stop()
        self.assertEqual(
            self.sdk.calls, ["asdkSend", "asdkReset", "asdkStop"]
        )

    def test_reset(self):
        self.dm.send(numpy.ones(N_ACTUATORS))
        self.dm.reset()
        numpy.testing.assert_array_equal(
            self.virtual_mirror.current, numpy.zeros(N_ACTUATORS)
        )


class TestSendPattern(MirrorTestCase):
    def test_send_pattern(self):
        patterns = numpy.concatenate(
            [
                numpy.zeros(N_ACTUATORS),
                numpy.full(N_ACTUATORS, 0.1),
                numpy.random.rand(N_ACTUATORS) * 0.05,
            ]
        )
        self.dm.send_pattern(patterns, 3, 2)
        queued, n_repeats = self.virtual_mirror.queued
        numpy.testing.assert_array_equal(
            queued, patterns.reshape(3, N_ACTUATORS)
        )
        self.assertEqual(n_repeats, 2)
        self.assertTrue(self.virtual_mirror.playing)

    def test_default_repeat(self):
        self.dm.send_pattern(numpy.zeros(N_ACTUATORS), 1)
        self.assertEqual(self.virtual_mirror.queued[1], 1)

    def test_two_dimensional_patterns(self):
        patterns = numpy.random.rand(4, N_ACTUATORS)
        self.dm.send_pattern(patterns, 4)
        numpy.testing.assert_array_equal(
            self.virtual_mirror.queued[0], patterns
        )

    def test_wrong_size(self):
        with unittest.mock.patch.object(libasdk, "SendPattern") as send:
            for n_values, n_patterns in [
                (N_ACTUATORS * 2 + 1, 2),
                (N_ACTUATORS - 1, 1),
                (N_ACTUATORS * 2, 1),
                (N_ACTUATORS, 2),
                (N_ACTUATORS, 0),
                (0, 0),
            ]:
                with self.subTest(n_values=n_values, n_patterns=n_patterns):
                    with self.assertRaises(asdk.SizeError):
                        self.dm.send_pattern(
                            numpy.zeros(n_values), n_patterns, 1
                        )
        send.assert_not_called()

    def test_negative_repeats(self):
        with self.assertRaises(ValueError):
            self.dm.send_pattern(numpy.zeros(N_ACTUATORS), 1, -1)

    def test_stop_playback(self):
        self.dm.send_pattern(numpy.zeros(N_ACTUATORS * 2), 2, 100)
        self.dm.stop()
        self.assertFalse(self.virtual_mirror.playing)

    def test_stop_when_not_playing(self):
        self.dm.stop()
        self.dm.stop()
        self.assertFalse(self.virtual_mirror.playing)


class TestParameters(MirrorTestCase):
    def test_get(self):
        value = self.dm.get("NbOfActuator")
        self.assertIsInstance(value, float)
        self.assertEqual(value, N_ACTUATORS)
        self.assertEqual(self.dm["NbOfActuator"], value)

    def test_get_unknown_parameter(self):
        with self.assertRaises(asdk.DeviceError) as cm:
            self.dm.get("NonExistentParameter")
        self.assertEqual(cm.exception.code, libs.ERR_UNKNOWN_PARAMETER)
        self.assertIn("not found", cm.exception.message.lower())

    def test_set_and_get(self):
        self.dm.set("UseException", 1.0)
        self.assertEqual(self.dm.get("UseException"), 1.0)
        self.dm["UseException"] = 0
        self.assertEqual(self.dm["UseException"], 0.0)

    def test_set_read_only(self):
        with self.assertRaises(asdk.DeviceError) as cm:
            self.dm.set("NbOfActuator", 5)
        self.assertEqual(cm.exception.code, libs.ERR_READ_ONLY_PARAMETER)
        self.assertEqual(self.dm.get("NbOfActuator"), N_ACTUATORS)

    def test_set_and_get_vector(self):
        values = [0.5] * N_ACTUATORS
        self.dm.set("mcff", values)
        numpy.testing.assert_array_equal(
            self.virtual_mirror.vectors["mcff"], values
        )
        vector = self.dm.get_vector("mcff")
        self.assertIsInstance(vector, numpy.ndarray)
        self.assertEqual(vector.dtype, numpy.float64)
        numpy.testing.assert_array_equal(vector, values)
        self.assertEqual(self.sdk.n_allocated, 0)
        self.assertEqual(self.sdk.calls[-1], "asdkFreeVector")

    def test_empty_vector(self):
        self.dm.set_vector("mcff", [])
        vector = self.dm.get_vector("mcff")
        self.assertEqual(vector.shape, (0,))
        self.assertEqual(self.sdk.n_allocated, 0)

    def test_set_vector_always_copies(self):
        values = numpy.zeros(N_ACTUATORS)
        with unittest.mock.patch.object(
            libasdk, "SetVector", return_value=libasdk.SUCCESS
        ) as set_vector:
            self.dm.set_vector("mcff", values)
        pointer = set_vector.call_args[0][2]
        self.assertNotEqual(
            ctypes.cast(pointer, ctypes.c_void_p).value, values.ctypes.data
        )
        self.assertEqual(set_vector.call_args[0][3], N_ACTUATORS)

    def test_get_unknown_vector(self):
        with self.assertRaises(asdk.DeviceError):
            self.dm.get_vector("NonExistentParameter")
        self.assertNotIn("asdkFreeVector", self.sdk.calls)
        self.assertEqual(self.sdk.n_allocated, 0)

    def test_set_and_get_string(self):
        self.dm.set("CfgPath", "/tmp/test")
        self.assertEqual(self.virtual_mirror.strings["CfgPath"], "/tmp/test")
        self.assertEqual(self.dm.get_string("CfgPath"), "/tmp/test")
        self.assertEqual(self.dm.get_string("SerialNumber"), SERIAL)
        self.assertEqual(self.sdk.n_allocated, 0)
        self.assertEqual(self.sdk.calls[-1], "asdkFreeString")

    def test_set_dispatch(self):
        for value, method in [
            ("/tmp", "set_string"),
            (1.0, "set_scalar"),
            (1, "set_scalar"),
            (True, "set_scalar"),
            (numpy.float32(2.0), "set_scalar"),
            ([1.0, 2.0], "set_vector"),
            (numpy.zeros(3), "set_vector"),
        ]:
            with self.subTest(value=value):
                with unittest.mock.patch.object(self.dm, method) as mock:
                    self.dm.set("foo", value)
                mock.assert_called_once_with("foo", value)


class TestErrorTranslation(MirrorTestCase):
    def test_error_is_read_right_after_failure(self):
        self.sdk.fail_next("asdkReset", 30, "actuator saturated")
        with self.assertRaises(asdk.DeviceError):
            self.dm.reset()
        self.assertEqual(self.sdk.calls, ["asdkReset", "asdkGetLastError"])

    def test_long_message_is_truncated(self):
        self.sdk.fail_next("asdkStop", 1, "x" * 2000)
        with self.assertRaises(asdk.DeviceError) as cm:
            self.dm.stop()
        self.assertEqual(cm.exception.message, "x" * 511)

    def test_empty_message(self):
        self.sdk.fail_next("asdkStop", 1, "")
        with self.assertRaises(asdk.DeviceError) as cm:
            self.dm.stop()
        self.assertEqual(cm.exception.code, 1)
        self.assertTrue(cm.exception.message)

    def test_error_string(self):
        error = asdk.DeviceError(11, "Parameter not found: foo")
        self.assertEqual(str(error), "ASDK error (11): Parameter not found: foo")

    def test_error_pickle(self):
        error = pickle.loads(pickle.dumps(asdk.DeviceError(11, "foo")))
        self.assertIsInstance(error, asdk.DeviceError)
        self.assertEqual(error.code, 11)
        self.assertEqual(error.message, "foo")

    def test_exception_hierarchy(self):
        for cls in [
            asdk.DeviceError,
            asdk.InitialiseError,
            asdk.SizeError,
            asdk.LibraryLoadError,
        ]:
            with self.subTest(cls=cls):
                self.assertTrue(issubclass(cls, asdk.ASDKError))


if __name__ == "__main__":
    unittest.main()
