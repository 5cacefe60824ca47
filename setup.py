from setuptools import setup, find_packages

setup(
    name="business-site-analyzer",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.10",
    install_requires=[
        "langchain-core",
        "langchain-anthropic",
        "langchain-google-genai",
        "langchain-deepseek",
        "playwright",
        "beautifulsoup4",
        "python-dotenv",
        "pydantic>=2",
        "fastapi",
        "uvicorn",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
    entry_points={
        "console_scripts": [
            "bizcrawler=bizcrawler.runner:main",
            "bizcrawler-api=bizcrawler.app:main",
        ],
    },
)
