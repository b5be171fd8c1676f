"""Setup configuration for eng_metrics"""

from setuptools import setup, find_packages

setup(
    name="eng-metrics-collector",
    version="0.1.0",
    description=(
        "CLI tool for GitHub pull request engineering metrics: time to first "
        "review and time to merge, stored in BigQuery."
    ),
    author="Engineering Metrics Collector Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
        "google-cloud-bigquery>=3.11.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "eng-metrics-collector=eng_metrics.main:main",
        ],
    },
)
