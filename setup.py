# Package installation script

from setuptools import setup, find_packages

setup(
    name="serial_gateway",
    version="0.1.0",
    packages=find_packages(where="src", include=["serial_gateway", "serial_gateway.*"]),
    package_dir={"": "src"},
    entry_points={
        "console_scripts": [
            "serial_gateway=serial_gateway.__main__:main",
        ],
    },
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "hypercorn",
        "pyyaml",
        "aiomqtt>=2.0",
        "pydantic>=2.0",
        "pyserial",
        "pyserial-asyncio",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
