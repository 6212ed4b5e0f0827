"""
Setup script for Lodestar-DNS.
"""

from setuptools import find_namespace_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="lodestar-dns",
    version="0.1.0",
    description="Keeps Pi-hole local DNS records in sync with a declared set of records",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_namespace_packages(include=["lodestar_dns", "lodestar_dns.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=8.0", "pytest-asyncio>=0.23"],
    },
    entry_points={
        "console_scripts": [
            "lodestar-dns=lodestar_dns.__main__:main",
        ],
    },
    include_package_data=True,
)
