from setuptools import setup, find_packages

setup(
    name="ciharness",
    version="0.0.1",
    description="Continuous integration harness for Cromwell builds",
    author="The ciharness developers",
    packages=find_packages(exclude=["tests", "tests.*"]),
    license="AGPL-3.0-only",
    python_requires=">=3.11",
    install_requires=[
        "pydantic",
        "toml",
        "aiohttp",
        "humanize",
        # process tree walking for teardown
        "psutil",
    ],
    extras_require={
        "test": ["pytest"],
    },
    include_package_data=True,
    entry_points={
        "console_scripts": [
            "ciharness = ciharness.cli:main",
        ]
    }
)
