"""
Setup script for gpu-container-helper.

This setup script handles Python package installation of the GPU container
configuration command line.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements
requirements_file = Path(__file__).parent / "requirements.txt"
if requirements_file.exists():
    with open(requirements_file) as f:
        requirements = [line.strip() for line in f if line.strip() and not line.startswith('#')]
else:
    requirements = [
        'psutil>=5.8.0',
        'pynvml>=11.4.1',
    ]

# Development requirements
dev_requirements = [
    'pytest>=6.2.0',
    'pytest-mock>=3.6.0',
    'flake8>=4.0.0',
    'mypy>=0.950',
]

setup(
    name="gpu-container-helper",
    version="1.0.0",
    author="Cluster-Helper Team",
    author_email="cluster-helper@example.com",
    description="Configure containers with GPU devices and driver capabilities",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/riteshr19/Cluster-Helper",
    project_urls={
        "Bug Reports": "https://github.com/riteshr19/Cluster-Helper/issues",
        "Source": "https://github.com/riteshr19/Cluster-Helper",
    },

    # Package configuration
    packages=find_packages(where='src'),
    package_dir={'': 'src'},

    # Dependencies
    install_requires=requirements,
    extras_require={
        'dev': dev_requirements,
        'test': ['pytest>=6.2.0', 'pytest-mock>=3.6.0'],
    },

    # Python version requirement
    python_requires='>=3.8',

    # Entry points
    entry_points={
        'console_scripts': [
            'gpu-container-cli=gpu_container_helper.main:run',
        ],
    },

    # Package metadata
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Intended Audience :: Developers",
        "Topic :: System :: Systems Administration",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Operating System :: POSIX :: Linux",
    ],

    keywords="gpu container nvidia cuda driver devices",

    # Development dependencies
    tests_require=dev_requirements,

    # Zip safety
    zip_safe=False,
)
