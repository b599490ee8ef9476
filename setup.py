from setuptools import setup, find_packages

with open("VERSION", "r") as f:
    version = f.read().strip()

with open("requirements.txt", "r") as f:
    requirements = [line.strip() for line in f if line.strip() and not line.startswith("#")]

setup(
    name="exchange-normalizer",
    version=version,
    description="Uniform adapter contract and normalization layer for cryptocurrency exchanges",
    packages=find_packages(include=["common", "common.*", "core", "core.*", "tools", "tools.*"]),
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    include_package_data=True,
    entry_points={
        "console_scripts": [
            "exchange-orderbook-smoke=tools.exchange_smoke.orderbook_smoke:main",
        ]
    },
    package_data={
        "": ["*.yaml", "*.json", "*.txt", "VERSION"]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Financial and Insurance Industry",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
