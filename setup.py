from setuptools import setup, find_packages

setup(
    name="treesearch",
    version="0.1.0",
    description="Road building and combinatorial straight-line fitting for multi-plane drift chambers",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(include=["treesearch", "treesearch.*"]),
    python_requires=">=3.10",
    install_requires=[
        # Runtime dependencies
        "numpy",
        "numba",
        "pandas",
        "matplotlib",
        "scipy",
        "orjson",
    ],
    extras_require={
        # Parquet input for raw hit tables
        "parquet": [
            "pyarrow",
        ],
        # Test runner
        "test": [
            "pytest",
        ],
        # Developer extras
        "dev": [
            "pytest",
            "black",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "treesearch-roads=treesearch.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
