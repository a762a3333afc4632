#!/usr/bin/env python3

## Copyright (C) 2020 David Miguel Susano Pinto <carandraug@gmail.com>
## Copyright (C) 2020 Mick Phillips <mick.phillips@gmail.com>
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

"""Serve an Alpao deformable mirror over Pyro.

This module can be called as a program to serve a mirror, like so::

    python -m asdk.device_server --port 8000 BAL123

Clients connect to it with Pyro, the object id being
``DeformableMirror``::

    import Pyro4
    dm = Pyro4.Proxy("PYRO:DeformableMirror@127.0.0.1:8000")
    dm.send(numpy.zeros(dm.n_actuators))

"""

import argparse
import logging
import signal
import sys
import threading
import typing
from logging import StreamHandler
from logging.handlers import RotatingFileHandler

import numpy
import Pyro4

import asdk._utils
import asdk.mirror


_logger = logging.getLogger(__name__)


# Pyro configuration. Use pickle because it can serialize numpy ndarrays.
Pyro4.config.SERIALIZERS_ACCEPTED.add("pickle")
Pyro4.config.SERIALIZER = "pickle"

MIRROR_OBJECT_ID = "DeformableMirror"


@Pyro4.expose
class SerializedMirror:
    """Wraps a `DeformableMirror` instance with a lock for synchronization.

    The Pyro daemon handles each connection on its own thread but the
    SDK does not support concurrent calls on the same mirror.  The
    error stack is also shared so each call and the reading of its
    error must not be interleaved with other calls.  Releasing the
    mirror is not exposed, that is left to whoever serves it.
    """

    def __init__(self, mirror: asdk.mirror.DeformableMirror) -> None:
        self._mirror = mirror
        self._lock = threading.RLock()

    @property
    def serial_number(self) -> str:
        return self._mirror.serial_number

    @property
    def n_actuators(self) -> int:
        with self._lock:
            return self._mirror.n_actuators

    def is_open(self) -> bool:
        with self._lock:
            return self._mirror.is_open()

    def send(self, values: typing.Sequence[float]) -> None:
        with self._lock:
            self._mirror.send(values)

    def send_pattern(
        self,
        values: typing.Sequence[float],
        n_patterns: int,
        n_repeats: int = 1,
    ) -> None:
        with self._lock:
            self._mirror.send_pattern(values, n_patterns, n_repeats)

    def reset(self) -> None:
        with self._lock:
            self._mirror.reset()

    def stop(self) -> None:
        with self._lock:
            self._mirror.stop()

    def get(self, name: str) -> float:
        with self._lock:
            return self._mirror.get(name)

    def get_vector(self, name: str) -> numpy.ndarray:
        with self._lock:
            return self._mirror.get_vector(name)

    def get_string(self, name: str) -> str:
        with self._lock:
            return self._mirror.get_string(name)

    def set(self, name: str, value) -> None:
        with self._lock:
            self._mirror.set(name, value)

    def set_scalar(self, name: str, value: float) -> None:
        with self._lock:
            self._mirror.set_scalar(name, value)

    def set_vector(self, name: str, values: typing.Sequence[float]) -> None:
        with self._lock:
            self._mirror.set_vector(name, values)

    def set_string(self, name: str, value: str) -> None:
        with self._lock:
            self._mirror.set_string(name, value)


def _create_log_formatter(name: str):
    """Create a logging.Formatter for the device server.

    Args:
        name: serial number of the mirror to be used on the log output.

    """
    return logging.Formatter(
        "%%(asctime)s:%s (%%(name)s):%%(levelname)s"
        ":PID %%(process)s: %%(message)s" % name
    )


def serve_mirror(
    serial_number: str,
    host: str,
    port: int,
    exit_event: typing.Optional[threading.Event] = None,
) -> None:
    """Open a mirror and serve it until `exit_event` is set.

    When called from the main thread, SIGINT and SIGTERM also stop the
    server.  The mirror is released on return, including when serving
    fails.
    """
    if exit_event is None:
        exit_event = threading.Event()

    def term_func(sig, frame):
        _logger.info("received signal %s, shutting down", sig)
        exit_event.set()

    previous_handlers = {}
    if threading.current_thread() is threading.main_thread():
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous_handlers[signum] = signal.signal(signum, term_func)

    try:
        with asdk.mirror.DeformableMirror(serial_number) as mirror:
            pyro_daemon = Pyro4.Daemon(host=host, port=port)
            uri = pyro_daemon.register(
                SerializedMirror(mirror), MIRROR_OBJECT_ID
            )
            # requestLoop clears the shutdown flag on entry so a
            # shutdown before the loop starts would be lost.
            loop_started = threading.Event()

            def loop_condition() -> bool:
                loop_started.set()
                return True

            # Run the Pyro daemon in a separate thread so that we can
            # do clean shutdown under Windows.
            pyro_thread = threading.Thread(
                target=pyro_daemon.requestLoop, args=(loop_condition,)
            )
            pyro_thread.daemon = True
            pyro_thread.start()
            loop_started.wait()
            _logger.info("Serving %s", uri)
            try:
                while not exit_event.wait(1.0):
                    pass
            finally:
                pyro_daemon.shutdown()
                pyro_thread.join()
            _logger.info("... server shut down.")
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)


def _parse_cmd_line_args(args: typing.Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="asdk-server")
    parser.add_argument(
        "--logging-level",
        action="store",
        type=str,
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Set logging level",
    )
    parser.add_argument(
        "--log-file",
        action="store",
        type=str,
        default=None,
        help="Also log to this file, rotating it when it gets large",
    )
    parser.add_argument(
        "--host",
        action="store",
        type=str,
        default="127.0.0.1",
        help="Hostname or IP address to serve the mirror",
    )
    parser.add_argument(
        "--port",
        action="store",
        type=int,
        default=8000,
        help="Port number to serve the mirror",
    )
    parser.add_argument(
        "--config-dir",
        action="store",
        type=str,
        default=None,
        help="Directory with the mirror configuration files (sets ACECFG)",
    )
    parser.add_argument(
        "serial_number",
        action="store",
        type=str,
        metavar="SERIAL-NUMBER",
        help="Serial number of the mirror",
    )
    return parser.parse_args(args)


def main(argv: typing.Sequence[str]) -> int:
    args = _parse_cmd_line_args(argv[1:])

    root_logger = logging.getLogger()
    root_logger.setLevel(args.logging_level.upper())

    formatter = _create_log_formatter(args.serial_number)
    stderr_handler = StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    root_logger.addHandler(stderr_handler)
    if args.log_file is not None:
        file_handler = RotatingFileHandler(
            args.log_file, maxBytes=1024 * 1024, backupCount=5
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if args.config_dir is not None:
        asdk._utils.set_config_dir(args.config_dir)

    serve_mirror(args.serial_number, args.host, args.port)
    return 0


def _setuptools_entry_point() -> int:
    # The setuptools entry point must be a function, we can't simply
    # name this module even if this module does work as a script.
    return main(sys.argv)


if __name__ == "__main__":
    sys.exit(main(sys.argv))
