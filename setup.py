#!/usr/bin/env python
"""
fleetrun - Fleet SSH copy-and-exec tool

Copies files to and runs shell commands on many hosts over SSH, a
bounded number of hosts at a time, optionally through a jump host.
"""

import os
from setuptools import setup, find_packages

# Read the README for long description
here = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(here, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

# Version
VERSION = '0.1.0'

setup(
    name='fleetrun',
    version=VERSION,
    description='Copy files and run commands on a fleet of hosts over SSH',
    long_description=long_description,
    long_description_content_type='text/markdown',

    license='MIT',

    classifiers=[
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: System :: Systems Administration',
    ],

    keywords='ssh scp automation fleet paramiko',

    packages=find_packages(exclude=['tests', 'tests.*']),

    python_requires='>=3.10',

    install_requires=[
        'paramiko>=3.0',
        'PyYAML>=6.0',
    ],

    extras_require={
        'dev': [
            'pytest>=7.0',
            'cryptography>=41.0',
        ],
    },

    # Entry points for CLI commands
    entry_points={
        'console_scripts': [
            'fleetrun=fleetrun.cli.main:main',
        ],
    },
)
