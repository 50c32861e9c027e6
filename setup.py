from setuptools import find_packages, setup

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="snag",
    version="0.4.0",
    author="Grant Carthew",
    description="Fetch web page content through a Chromium-based browser",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/grantcarthew/snag",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "requests>=2.31.0",
        "beautifulsoup4>=4.12.0",
        "lxml>=4.9.0",
        "markdownify>=0.11.6",
        "playwright>=1.39.0",
        "psutil>=6.0.0",
        "types-requests>=2.31.0",
        "types-beautifulsoup4>=4.12.0",
        "rich>=14.2.0",
        "pyyaml>=6.0.3",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "snag=snag.cli:main",
        ],
    },
)
