#!/usr/bin/env python

# SPDX-FileCopyrightText: 2021 Rose Davidson <rose@metaclassical.com>
#
# SPDX-License-Identifier: GPL-3.0-or-later

# -*- encoding: utf-8 -*-

from glob import glob
from os.path import basename
from os.path import splitext

from setuptools import find_packages
from setuptools import setup

setup(
    name="termfep",
    version="0.0.0",
    license="GPL-3.0-or-later",
    description="Input method front end for the terminal",
    long_description="Runs an input method (Fcitx5 over D-Bus) inside a plain terminal: "
    "the preedit is drawn underlined in place and committed text is written out.",
    author="Rose Davidson",
    author_email="rose@metaclassical.com",
    packages=find_packages("src"),
    package_dir={"": "src"},
    py_modules=[splitext(basename(path))[0] for path in glob("src/*.py")],
    include_package_data=True,
    zip_safe=False,
    classifiers=[
        # complete classifier list: http://pypi.python.org/pypi?%3Aaction=list_classifiers
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: Implementation :: CPython",
        "Topic :: Terminals",
        "Topic :: Text Processing :: General",
    ],
    keywords=["input method", "fcitx5", "terminal", "trio"],
    python_requires=">=3.11",
    install_requires=[
        "cattrs>=23.1",
        "jeepney>=0.8",
        "msgspec",
        "outcome>=1.2",
        "pygtrie>=2.4.2",
        "trio>=0.25.0",
        "trio-util>=0.7.0",
        "tricycle>=0.4.0",
    ],
    tests_require=["pytest>=6.2.4", "pytest-trio>=0.8.0"],
    extras_require={
        "test": ["pytest>=6.2.4", "pytest-trio>=0.8.0"],
    },
    entry_points={
        "console_scripts": [
            "termfep = termfep.app:main",
        ],
    },
)
