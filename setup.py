from setuptools import setup, find_packages

setup(
    name="dotstash",
    version="0.1",
    packages=find_packages(include=["dotstash", "dotstash.*"]),
    description="Dotfiles backup and restore with streaming age/gpg encryption and safe extraction",
    author="vercingetorx",
    python_requires=">=3.11",
    install_requires=[],
    extras_require={"test": ["pytest"]},
    entry_points={
        "console_scripts": [
            "dotstash=dotstash.cli:main",
        ]
    },
)
