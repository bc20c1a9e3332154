from setuptools import setup, find_packages

setup(
    name="mltrack",
    version="0.1.0",
    packages=find_packages(include=["mltrack", "mltrack.*"]),
    install_requires=[
        "omegaconf>=2.3.0",
        "click>=8.0.0",
        "pandas>=1.5.0",
        "tqdm>=4.65.0",
        "typing_extensions>=4.5.0",
        "mysql-connector-python>=8.0.26",
        "fastapi>=0.100.0",
        "starlette>=0.27.0",
        "pydantic>=2.0.0",
        "uvicorn>=0.22.0",
        "httpx>=0.24.0",
    ],
    extras_require={
        "s3": ["boto3>=1.26.0"],
        "azure": ["azure-storage-blob>=12.14.0"],
        "gcs": ["google-cloud-storage>=2.7.0"],
        "sftp": ["paramiko>=3.0.0"],
        "all": [
            "boto3>=1.26.0",
            "azure-storage-blob>=12.14.0",
            "google-cloud-storage>=2.7.0",
            "paramiko>=3.0.0",
        ],
        "test": [
            "pytest>=7.0.0,<9.1",
            "pytest-cov>=4.1.0",
            "pytest-xdist>=3.3.0",
            "httpx>=0.24.0",
        ],
        "dev": [
            "black>=22.3.0",
            "isort>=5.10.1",
            "flake8>=4.0.1",
            "mypy>=0.950",
        ]
    },
    entry_points={
        "console_scripts": [
            "mltrack=mltrack.cli:cli",
        ],
    },
    author="Roy Michaeli",
    description="A Python package for tracking machine learning experiments, runs, metrics and artifacts",
    python_requires=">=3.9",
)
