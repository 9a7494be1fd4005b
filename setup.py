from setuptools import setup, find_packages

setup(
    name="semgraph",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pyyaml",
        # Code graph
        "networkx>=3.0",
        "kuzu>=0.6",
        "tree-sitter>=0.22",
        "tree-sitter-python",
        "tree-sitter-javascript",
        "tree-sitter-typescript",
        "watchdog>=3.0",
        "tqdm>=4.60",
    ],
    extras_require={
        "tests": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "semgraph=semgraph.cli:main",
        ],
    },
    author="Uday Kanth",
    description="Incrementally maintained semantic graph of a source tree, with a query layer.",
)
