from setuptools import setup, find_packages

setup(
    name="inclusive-experiment-engine",
    version="1.0.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "pandas>=1.5.0",
        "numpy>=1.21.0",
        "scipy>=1.7.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
    ],
    extras_require={
        "parquet": ["pyarrow>=10.0.0"],
        "test": ["pytest>=7.0.0"],
    },
)
