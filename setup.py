#!/usr/bin/env python
# -*- coding: utf-8 -*-

## Copyright (C) 2016 David Miguel Susano Pinto <carandraug@gmail.com>
##
## Copying and distribution of this file, with or without modification,
## are permitted in any medium without royalty provided the copyright
## notice and this notice are preserved.  This file is offered as-is,
## without any warranty.

import setuptools
import setuptools.command.sdist


project_name = "pyasdk"
project_version = "0.1.0"


# Modify the sdist command class to include extra files in the source
# distribution.  The package_data (from setuptools) and data_files
# (from distutils) options are for files that will be installed and we
# don't want to install this files, we just want them on the source
# distribution for user information.
manifest_files = [
    "README.rst",
    "DESIGN.md",
]


class sdist(setuptools.command.sdist.sdist):
    def make_distribution(self):
        self.filelist.extend(manifest_files)
        setuptools.command.sdist.sdist.make_distribution(self)


setuptools.setup(
    name=project_name,
    version=project_version,
    description="Python interface to Alpao deformable mirrors.",
    long_description=open("README.rst", "r").read(),
    long_description_content_type="text/x-rst",
    license="GPL-3.0+",
    author="See homepage for a complete list of contributors",
    author_email=" ",
    packages=setuptools.find_packages(include=["asdk", "asdk.*"]),
    python_requires=">=3.7",
    install_requires=[
        "Pyro4",
        "numpy",
    ],
    extras_require={"test": ["pytest"]},
    entry_points={
        "console_scripts": [
            "asdk-server = asdk.device_server:_setuptools_entry_point",
        ]
    },
    # https://pypi.python.org/pypi?:action=list_classifiers
    classifiers=[
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering",
        "License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)",
    ],
    cmdclass={
        "sdist": sdist,
    },
)
