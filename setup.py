from setuptools import find_packages, setup

setup(
    name="ugflow",
    version="0.1.0",
    packages=find_packages(exclude=["test*"]),
    install_requires=[
        "numpy",
        "pandas",
        "pysam",
        "joblib",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "compute_read_likelihoods = ugflow.pipelines.compute_read_likelihoods:main",
        ],
    },
    python_requires=">=3.9",
)
