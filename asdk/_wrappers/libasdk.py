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

"""Alpao deformable mirrors SDK (asdkWrapper.h).
"""

import ctypes
import os
from ctypes import c_char_p, c_double, c_int, c_int32, c_uint32

import asdk._utils


if os.name in ("nt", "ce"):
    SDK = asdk._utils.library_loader(
        asdk._utils.sdk_library_name("ASDK"), ctypes.WinDLL
    )
else:
    SDK = asdk._utils.library_loader(
        asdk._utils.sdk_library_name("libasdk.so"), ctypes.CDLL
    )


class DM(ctypes.Structure):
    pass


pDM = ctypes.POINTER(DM)

# We have this "typedefs" to ease matching with alpao's headers.
CStr = c_char_p
CStr_p = ctypes.POINTER(CStr)
Scalar = c_double
Scalar_p = ctypes.POINTER(Scalar)
Scalar_pp = ctypes.POINTER(Scalar_p)
Int = c_int32
UInt = c_uint32
UInt_p = ctypes.POINTER(UInt)
Size_T = c_int

COMPL_STAT = c_int  # enum for function completion status
SUCCESS = 0
FAILURE = -1


def make_prototype(name, argtypes, restype=COMPL_STAT):
    func = getattr(SDK, name)
    func.argtypes = argtypes
    func.restype = restype
    return func


Init = make_prototype("asdkInit", [CStr], pDM)

Release = make_prototype("asdkRelease", [pDM])

Send = make_prototype("asdkSend", [pDM, Scalar_p])

SendPattern = make_prototype("asdkSendPattern", [pDM, Scalar_p, UInt, UInt])

Reset = make_prototype("asdkReset", [pDM])

Stop = make_prototype("asdkStop", [pDM])

Get = make_prototype("asdkGet", [pDM, CStr, Scalar_p])

GetVector = make_prototype("asdkGetVector", [pDM, CStr, Scalar_pp, UInt_p])

FreeVector = make_prototype("asdkFreeVector", [Scalar_pp])

GetString = make_prototype("asdkGetString", [pDM, CStr, CStr_p])

FreeString = make_prototype("asdkFreeString", [CStr_p])

Set = make_prototype("asdkSet", [pDM, CStr, Scalar])

SetVector = make_prototype("asdkSetVector", [pDM, CStr, Scalar_p, Int])

SetString = make_prototype("asdkSetString", [pDM, CStr, CStr])

GetLastError = make_prototype("asdkGetLastError", [UInt_p, CStr, Size_T])
