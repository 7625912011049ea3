"""Setup configuration for adsdesk package."""

from setuptools import setup, find_packages

setup(
    name="adsdesk",
    version="1.0.0",
    description="Campaign dashboard backend for the Meta Marketing API",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    author="Adsdesk Team",
    python_requires=">=3.9",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    package_data={"adsdesk.config": ["schema.settings.yaml"]},
    install_requires=[
        "facebook-business>=19.0.1",
        "python-dotenv>=1.0.1",
        "PyYAML>=6.0.2",
        "requests>=2.32.3",
        "pytz>=2020.1",
        "prometheus-client>=0.20.0",
        "jsonschema>=4.23.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "adsdesk=adsdesk.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
