from setuptools import setup, find_packages

setup(
    name="fs_crawler_elasticsearch",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "elasticsearch>=8.11.1",
        "duckdb>=0.9.0",
        "xxhash>=3.0.0",
        "pyyaml>=6.0.0",
        "pytz>=2023.3",
        "pyarrow>=14.0.1",
        "paramiko>=3.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "fs-crawler=fs_crawler_elasticsearch.main:main",
        ],
    },
)
