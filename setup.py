from pathlib import Path
from setuptools import setup, find_packages

ROOT = Path(__file__).parent
README = (ROOT / "README.md").read_text(encoding="utf-8")

setup(
    name="firestore_graph_odm",
    version="0.1.0",
    description="Async Pydantic ODM for Firestore with atomic linked-entity writes and graph readback",
    long_description=README,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(exclude=("tests", "tests.*", "examples")),
    include_package_data=True,           # include py.typed
    package_data={"firestore_graph_odm": ["py.typed"]},
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0,<3.0.0",
        "pydantic-core",
        "typing-extensions",
        "google-cloud-firestore>=2.11.0,<3.0.0",  # FieldFilter; sessions use AsyncTransaction internals
        "packaging",
        "passlib>=1.7",
    ],
    extras_require={
        "dev": ["black", "ruff", "pytest", "pytest-asyncio", "httpx", "Faker"],
    },
    entry_points={
        "console_scripts": [
            "firestore-graph-seed=firestore_graph_odm.seed:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Framework :: AsyncIO",
        "Topic :: Database :: Front-Ends",
        "Typing :: Typed",
    ],
    keywords=[
        "firestore",
        "pydantic",
        "odm",
        "asyncio",
        "transactions",
    ],
)
