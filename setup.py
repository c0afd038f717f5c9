"""
Setup script for YouTube Trust Check
"""

from setuptools import setup, find_packages

with open("requirements.txt") as f:
    requirements = f.read().splitlines()
    # Remove comments and empty lines
    requirements = [r for r in requirements if r and not r.startswith("#")]

setup(
    name="yt-trust-check",
    version="1.0.0",
    description="Summaries, trust scores and claim spot-checks for YouTube videos",
    author="Your Name",
    packages=find_packages(include=["config", "config.*", "core", "core.*", "workers", "workers.*", "api", "api.*"]),
    py_modules=["cli"],
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.4.0"],
    },
    entry_points={
        "console_scripts": [
            "trustcheck=cli:cli",
        ],
    },
    python_requires=">=3.11",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
