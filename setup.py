import pathlib

import setuptools

ROOT_PATH = pathlib.Path(__file__).parent.resolve()


setuptools.setup(
    name="pg-provisioner",
    version="0.1.0",
    description="Idempotent provisioning of a local PostgreSQL server and database",
    python_requires=">=3.9",
    packages=setuptools.find_packages(where=str(ROOT_PATH), exclude=["tests", "tests.*"]),
    install_requires=[
        "pg8000",
        "retry",
        "typer",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "pg-provisioner = pg_provisioner.__main__:main",
        ],
    },
)
