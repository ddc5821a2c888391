"""Setup configuration for Modstream Discord Bot."""

from setuptools import setup, find_packages

setup(
    name="modstream",
    version="0.0.1",
    description="A Discord bot for rule-based automod with a live moderation event log",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "py-cord>=2.6",
        "aiosqlite>=0.20",
        "aiohttp>=3.9",
        "PyYAML>=6.0",
        "python-dotenv>=1.0",
        "prompt_toolkit>=3.0",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "modstream=modstream.main:main",
        ],
    },
)
