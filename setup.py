from setuptools import setup, find_packages


setup(
    name="mpqtool",
    version="0.1",
    packages=find_packages(),
    description="Command-line tool to extract, list, view and create MPQ archives.",
    python_requires=">=3.8",
    install_requires=[],
    entry_points={
        "console_scripts": [
            "mpqtool=mpqtool.cli:main",
        ]
    },
)
