"""
RakshaSetu Setup Configuration

Makes RakshaSetu installable as a Python package and exposes the
``rakshasetu`` command line runner.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_file.exists():
    requirements = [
        line.strip() 
        for line in requirements_file.read_text(encoding="utf-8").splitlines()
        if line.strip() and not line.startswith("#")
    ]

setup(
    name="rakshasetu",
    version="1.0.0",
    description="Personal safety SOS flow with live location sharing",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="RakshaSetu Team",
    author_email="team@rakshasetu.example.com",
    url="https://github.com/rakshasetu/rakshasetu",
    license="MIT",
    
    # Package discovery
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    py_modules=["main"],
    
    # Include package data
    include_package_data=True,
    
    # Dependencies
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "hypothesis>=6.88.0",
        ],
    },
    
    # Python version requirement
    python_requires=">=3.10",
    
    # Entry points
    entry_points={
        "console_scripts": [
            "rakshasetu=main:main",
        ],
    },
    
    # Classifiers
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications",
        "Topic :: Utilities",
    ],
    
    # Keywords
    keywords="sos emergency safety live-location sms",
)
