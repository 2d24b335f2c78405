from setuptools import find_packages, setup


setup(
    name="etherview-engine",
    version="0.1.0",
    description="Multi-source wallet portfolio resolution for Ethereum mainnet",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "aiohttp>=3.9",
        "orjson>=3.9",
        "pydantic>=2.5",
    ],
    extras_require={
        "test": ["pytest>=7"],
    },
)
