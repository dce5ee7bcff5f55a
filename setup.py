#!/usr/bin/env python
"""
remotepool - Pooled remote execution over SSH and WinRM

Per-host connection pools with expiration and reaping, pluggable credential
stores with an encrypted in-memory cache, sudo/elevated transfers, SSH
gateway chaining and retry around transient connection failures.
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
    name='remotepool',
    version=VERSION,
    description='Pooled, credentialed, retrying remote execution over SSH and WinRM',
    long_description=long_description,
    long_description_content_type='text/markdown',

    license='MIT',

    classifiers=[
        'Development Status :: 4 - Beta',
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'Intended Audience :: Information Technology',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: System :: Networking',
        'Topic :: System :: Systems Administration',
    ],

    keywords='ssh winrm remote execution connection pool sudo paramiko pypsrp',

    packages=find_packages(exclude=['tests', 'tests.*']),

    python_requires='>=3.10',

    install_requires=[
        'paramiko>=3.0',
        'pypsrp>=0.8',
        'PyYAML>=6.0',
        'cryptography>=41.0',
    ],

    extras_require={
        'dev': [
            'pytest>=7.0',
        ],
    },

    # Entry points for CLI commands
    entry_points={
        'console_scripts': [
            'remotepool=remotepool.cli.main:main',
        ],
    },
)
