#!/usr/bin/env python3
from setuptools import setup

packname = 'anisoray'
version = '0.1.0'

subpacknames = [
    'anisoray.apps',
]

setup(
    name=packname,
    version=version,
    description='Travel times of seismic phases in transversely isotropic '
                'earth models.',
    author='The Pyrocko Developers',
    author_email='info@pyrocko.org',
    url='https://pyrocko.org',
    license='GPL-3.0-or-later',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Science/Research',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: Implementation :: CPython',
        'Operating System :: POSIX',
        'Operating System :: MacOS',
        'Topic :: Scientific/Engineering',
        'Topic :: Scientific/Engineering :: Physics'],
    keywords=[
        'seismology, travel times, anisotropy, ray theory, geophysics'],
    python_requires='>=3.11, <4',
    install_requires=[
        'numpy>=1.25,<3',
        'scipy',
        'pyyaml',
        'pyrocko',
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts':
            ['anisoray = anisoray.apps.anisoray:main'],
    },
    packages=[packname] + subpacknames,
    package_dir={'anisoray': 'src'},
    include_package_data=False,
)
