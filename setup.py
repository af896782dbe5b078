"""Setup configuration for the BI Test Compliance Engine."""
from setuptools import setup, find_packages

setup(
    name="bi-compliance-engine",
    version="0.1.0",
    description="BI test compliance engine: daily biological indicator tests and tool quarantine",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=[
        "PyQt6>=6.6.0",
        "pydantic>=2.5.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-qt>=4.2.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.12.0",
            "black>=23.11.0",
            "ruff>=0.1.0",
        ],
    },
    entry_points={
        "gui_scripts": [
            "bi-compliance=bi_compliance.gui.main:main",
        ],
    },
)
