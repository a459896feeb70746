from setuptools import setup, find_packages

setup(
    name="graph-memory",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "requests",
        "pyyaml",
        # Vector index
        "qdrant-client>=1.10",
        # Graph views
        "networkx>=3.0",
        "tqdm>=4.60",
    ],
    extras_require={
        # OpenAI embeddings (install separately when needed)
        "semantic": [
            "openai>=1.0",
        ],
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "graph-memory=graph_memory.cli:main",
        ],
    },
    python_requires=">=3.10",
    description="Knowledge graph memory stored as content-addressed chunks in Qdrant.",
)
