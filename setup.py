from setuptools import setup, find_packages

setup(
    name="agent-sentry",
    version="0.1.0",
    description="Watches the ERC-8004 agent registry, scores new agents and attests them with EAS",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "httpx>=0.27.0",
        "web3>=7.0.0",
        "eth-abi>=5.0.0",
        "eth-account>=0.13.0",
        "fastapi>=0.110.0",
        "pydantic>=2.0",
        "uvicorn>=0.29.0",
        "slowapi>=0.1.9",
        "python-json-logger>=3.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-asyncio>=0.23",
            "respx>=0.21",
        ],
    },
    entry_points={"console_scripts": ["agent-sentry=agent_sentry.cli:main"]},
    python_requires=">=3.9",
    license="MIT",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Security",
        "Topic :: Software Development :: Libraries",
        "Programming Language :: Python :: 3",
    ],
    keywords="agent trust reputation erc-8004 eas attestation x402",
)
