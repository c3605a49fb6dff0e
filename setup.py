from setuptools import find_packages, setup

version = None
with open("streamup/__init__.py", encoding="utf-8") as f:
    for line in f:
        if line.startswith("__version__"):
            version = line.strip().split()[-1][1:-1]
            break
assert version is not None, "Could not find version string"

with open("README.md", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="streamup",
    version=version,
    description="Streaming multipart uploads to S3-compatible object storage",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["streamup", "streamup.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=[
        "boto3>=1.28.0",
        "botocore>=1.31.0",
        "requests>=2.31.0",
        "tqdm>=4.66.0",
        "pydantic>=2.0",
        "typer>=0.12.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=6.2.5",
            "pytest-cov>=2.12.1",
            "pytest-asyncio>=0.21.0",
            "requests-mock>=1.9.3",
        ],
    },
    entry_points={
        "console_scripts": [
            "streamup = streamup.cli.app:main",
        ]
    },
    keywords="s3 r2 multipart upload streaming object-storage",
)
