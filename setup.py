from setuptools import find_packages, setup

setup(
    name="session-insights-backend",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["app", "bootloader"],
    install_requires=[
        "aiohttp>=3.9",
        "fastapi>=0.110",
        "openai>=1.30",
        "pydantic>=2.5",
        "python-dotenv>=1.0",
        "python-jose[cryptography]>=3.3",
        "PyYAML>=6.0",
        "uvicorn>=0.27",
    ],
    extras_require={
        "test": [
            "httpx>=0.27",
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    include_package_data=True,
    python_requires=">=3.11",
    description="Backend package for automated session analysis (sampling, batch analysis, reporting)",
)
