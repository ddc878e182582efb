"""
Setup script for Pastewire - Copy-paste signaled peer-to-peer encrypted chat.

Created by orpheus497

This messenger provides:
- Manual (copy-paste) session negotiation, no signaling server
- ECDH P-256 key agreement carried inside the pasted envelope
- AES-256-GCM encryption of every chat message
- Direct TCP channel between the two peers
- Terminal UI (Textual) and a plain line console
"""

from setuptools import setup, find_packages
import os

this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='pastewire-chat',
    version='1.0.0',
    author='orpheus497',
    description='Peer-to-peer end-to-end encrypted chat negotiated by copy-pasting JSON envelopes',
    long_description=long_description,
    long_description_content_type='text/markdown',
    package_dir={'': 'src'},
    packages=find_packages(where='src'),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: End Users/Desktop',
        'Topic :: Communications :: Chat',
        'Topic :: Security :: Cryptography',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: OS Independent',
        'Environment :: Console',
    ],
    python_requires='>=3.10',
    install_requires=[
        'textual>=0.70.0',
        'cryptography>=42.0.4',
        'rich>=13.7.0',
        'tomli>=2.0.1; python_version < "3.11"',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
        ],
    },
    entry_points={
        'console_scripts': [
            'pastewire=pastewire.main:main',
        ],
    },
)
