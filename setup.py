from pathlib import Path
from setuptools import setup

README = (Path(__file__).parent / "README.md").read_text(encoding="utf-8")

setup(
    name='nfslock',
    version='1.0.0',
    description='Lock files that stay exclusive on NFS, with leases, stale-lock reclaim and a command runner.',
    long_description=README,
    long_description_content_type='text/markdown',
    author='nfslock',
    license='MIT',
    python_requires='>=3.8',
    py_modules=[
        'nfslock',
        'nfslock_config',
        'nfslock_context',
        'nfslock_errors',
        'nfslock_fs',
        'nfslock_lock',
        'nfslock_models',
        'nfslock_refresh',
        'nfslock_stale',
        'nfslock_supervisor',
        'nfslock_sweep',
        'nfslock_utils',
    ],
    entry_points={
        'console_scripts': [
            'nfslock=nfslock:main',
        ],
    },
    install_requires=[],
    extras_require={
        'test': ['pytest'],
    },
    classifiers=[
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3 :: Only',
        'License :: OSI Approved :: MIT License',
        'Operating System :: POSIX',
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'Topic :: System :: Filesystems',
    ],
)
