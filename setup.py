"""
Setup script for the cms_regen package
"""
from setuptools import setup, find_packages

setup(
    name="cms-regen",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10,<3.14",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "pydantic>=2.5",
        "sqlalchemy>=2.0",
        "alembic>=1.13",
        "psycopg2-binary>=2.9",
        "python-dotenv>=1.0",
        "stripe>=8.0",
        "httpx>=0.26",
        "litellm>=1.40",
        "cryptography>=42.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
        ],
    },
)
