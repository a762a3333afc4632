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

import ctypes
import logging
import os
import sys
import typing


_logger = logging.getLogger(__name__)


# Environment variable read by the Alpao SDK to find the mirrors
# configuration files (the .acfg files).
CONFIG_DIR_ENVVAR = "ACECFG"

# Environment variable to override the name, or path, of the Alpao
# SDK shared library.
LIBRARY_ENVVAR = "ASDK_LIBRARY"


def library_loader(
    libname: str, dlltype: typing.Type[ctypes.CDLL] = ctypes.CDLL, **kwargs
) -> ctypes.CDLL:
    """Load shared library.

    This exists mainly to search for DLL in Windows using a standard
    search path, i.e, search for dlls in ``PATH``.

    Args:
        libname: file name or path of the library to be loaded as
            required by `dlltype`
        dlltype: the class of shared library to load.  Typically,
            `ctypes.CDLL` but sometimes `ctypes.WinDLL` in windows.
        kwargs: other arguments passed on to `dlltype`.
    """
    # Python 3.8 in Windows uses an altered search path.  `winmode=0`
    # restores the use of the standard search path.
    if (
        os.name == "nt"
        and sys.version_info >= (3, 8)
        and "winmode" not in kwargs
    ):
        winmode_kwargs = {"winmode": 0}
    else:
        winmode_kwargs = {}
    return dlltype(libname, **winmode_kwargs, **kwargs)


def sdk_library_name(default: str) -> str:
    """Name of the Alpao SDK library, unless overridden in environment."""
    return os.environ.get(LIBRARY_ENVVAR) or default


def set_config_dir(path: str) -> None:
    """Set directory where the Alpao SDK looks for configuration files.

    The SDK reads the ``ACECFG`` environment variable when a mirror
    is initialised so this must be called before constructing a
    :class:`asdk.mirror.DeformableMirror`.  The configuration files
    themselves are only read by the SDK.

    Raises:
        FileNotFoundError: if `path` is not a directory.
    """
    if not os.path.isdir(path):
        raise FileNotFoundError("no configuration directory '%s'" % path)
    path = os.path.abspath(path)
    _logger.debug("setting %s to '%s'", CONFIG_DIR_ENVVAR, path)
    os.environ[CONFIG_DIR_ENVVAR] = path
