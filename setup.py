#! python Setup.py

from setuptools import setup, find_packages

setup(
    name="schemeresolver",
    version="0.1.0",
    author="Ritchie Lab",
    author_email="Software_RitchieLab@pennmedicine.upenn.edu",
    url="https://ritchielab.org",
    description="Allele profile lookups and profile caching for typing schemes",  # noqa E501
    packages=find_packages(
        include=[
            "schemeresolver",
            "schemeresolver.*",
        ]
    ),
    python_requires=">=3.11",
    install_requires=[
        "SQLAlchemy>=2.0",
        "click>=8.1",
        "colorama>=0.4",
        "pandas>=2.0",
    ],
    extras_require={
        "postgres": ["psycopg2-binary>=2.9"],
        "test": ["pytest>=8.0"],
    },
    include_package_data=True,
    package_data={
        "schemeresolver": ["db/seed/*.json"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    entry_points={
        "console_scripts": [
            "schemeresolver=schemeresolver.utils.main_cli:main",
        ],
    },
)
