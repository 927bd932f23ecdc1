from setuptools import setup, find_packages

setup(
    name="aetherenv",
    version="0.1.0",
    description="Resolve pacman dependency closures and stage them into an isolated root.",
    license="GPL-3.0",
    packages=find_packages(exclude=("tests",)),
    python_requires=">=3.8",
    install_requires=[
        "rich>=13.0.0",
        "PyYAML>=6.0",
        "zstandard>=0.22",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "aetherenv=aetherenv.modules.cli:main",
        ],
    },
)
