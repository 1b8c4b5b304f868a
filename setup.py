# -*- coding: utf-8 -*-
import setuptools
import pathlib
import site
import sys

# odd bug with develop (editable) installs, see: https://github.com/pypa/pip/issues/7953
site.ENABLE_USER_SITE = "--user" in sys.argv[1:]

required = [
    "pyserial>=3.5",
    "simplejson>= 3.19.2",
    "mashumaro[msgpack]",
    "loguru",
    "rich>=13.0.0",
    "click>=8.0.0",
]

extras = {
    "test": ["pytest", "pytest_asyncio>=0.24.0"],
    "dev": ["doit", "ruff"],
}

here = pathlib.Path(__file__).parent.resolve()

long_description = (here / "README.md").read_text(encoding="utf-8")

# Read version
version = {}
with open("src/fixturetest/_version.py", "r") as f:
    exec(f.read(), version)

if __name__ == "__main__":
    setuptools.setup(
        name="fixturetest",
        version=version["__version__"],
        author="Fixture Test Engineering",
        description="Dual-serial (Arduino + STM32) production fixture tester.",
        long_description=long_description,
        long_description_content_type="text/markdown",
        keywords=[
            "fixture",
            "production test",
            "serial",
            "Arduino",
            "STM32",
        ],
        classifiers=[
            "License :: OSI Approved :: MIT License",
            "Development Status :: 3 - Alpha",
        ],
        license="MIT",
        package_dir={"": "src"},
        packages=setuptools.find_packages(
            where="src",
            exclude=["*.test", "*.test.*", "test.*", "test", "test_*"],
        ),
        entry_points={
            "console_scripts": [
                "fixturetest=fixturetest.cli:cli",
            ],
        },
        install_requires=required,
        extras_require=extras,
        python_requires=">= 3.11",
        setup_requires=["wheel"],  # force install of wheel first
    )
