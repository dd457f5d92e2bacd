from os import path
from typing import Optional

from setuptools import setup

FULLVERSION = "0.1.0"
VERSION = FULLVERSION

write_version = True


def write_version_py(filename: Optional[str] = None) -> None:
    cnt = """\
__version__ = '%s'
short_version = '%s'
"""
    if filename is None:
        filename = path.join(path.dirname(__file__), "lidargrid", "_version.py")

    a = open(filename, "w")
    try:
        a.write(cnt % (FULLVERSION, VERSION))
    finally:
        a.close()


if write_version:
    write_version_py()


with open("README.md", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="lidargrid",
    version=FULLVERSION,
    description="Rasterization of point clouds on regular grids and focal operations",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="The LidarGrid developers",
    license="Apache-2.0",
    packages=["lidargrid", "lidargrid.multiproc"],
    package_data={"lidargrid": ["config.ini"]},
    python_requires=">=3.10",
    install_requires=[
        "numpy",
        "scipy",
        "rasterio",
        "affine < 3",
        "geopandas >= 0.10.0",
        "pandas < 3",
        "tqdm",
    ],
    extras_require={"test": ["pytest"]},
    zip_safe=False,
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "License :: OSI Approved :: Apache Software License",
    ],
)
