from setuptools import find_packages, setup

setup(
    name="frameboost",
    version="0.1.0",
    description="Columnar frame to boosting-engine matrix conversion and a scored boosting driver.",
    python_requires=">=3.10",
    packages=find_packages(include=["frameboost", "frameboost.*"]),
    install_requires=[
        "numpy",
        "pandas",
        "scipy",
        "scikit-learn",
        "xgboost>=2.0",
        "torch",
    ],
    extras_require={"test": ["pytest"]},
)
