"""Setup configuration for bitrise_analyzer"""

from setuptools import setup, find_namespace_packages

setup(
    name="bitrise-build-analyzer",
    version="0.1.0",
    description=(
        "CLI tool for Bitrise build health reports: success rates, duration "
        "percentiles, workflow and repository breakdowns, and credit cost."
    ),
    author="Bitrise Build Analyzer Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
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
            "bitrise-analyzer=bitrise_analyzer.main:main",
        ],
    },
)
