"""Build and install the scadaview package (sources under python/)."""

from setuptools import setup, find_packages

setup(
    name="scadaview",
    version="0.1.0",
    description="Telemetry dashboard client: history, live updates, synchronized charts",
    python_requires=">=3.10",
    package_dir={"": "python"},
    packages=find_packages(where="python", include=["scadaview", "scadaview.*"]),
    install_requires=[
        "numpy",
        "aiohttp>=3.9",
        "websockets>=12",
        "python-dotenv",
    ],
    extras_require={
        "viewer": ["dearpygui>=1.10"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "scadaview=scadaview.cli:main",
            "scadaview-viewer=scadaview.viewer:launch",
        ],
    },
)
