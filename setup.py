#!/usr/bin/env python3
"""
Setup configuration for simple-music
Track acquisition, caching and tagging with a just-in-time playback queue
"""

from setuptools import setup, find_packages

# Read README for long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Core requirements (always installed)
core_requirements = [
    "spotipy>=2.22.1",
    "ytmusicapi>=1.3.2",
    "yt-dlp>=2023.12.30",
    "mutagen>=1.47.0",
    "click>=8.1.7",
    "rich>=13.7.0",
    "rich-click>=1.7.0",
    "pyyaml>=6.0.1",
    "requests>=2.31.0",
    "ffmpeg-python>=0.2.0",
    "tqdm>=4.66.1",
    "python-dotenv>=1.0.0",
    "aiohttp>=3.9.1",
    "Pillow>=10.0.0",
]

setup(
    name="simple-music",
    version="0.1.0",
    author="simple-music Team",
    description="Find, download, cache and tag songs from lossless providers with a YouTube fallback",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Sound/Audio",
        "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
    ],
    python_requires=">=3.10",
    install_requires=core_requirements,
    extras_require={
        "dev": [
            "pytest>=7.4.3",
            "pytest-asyncio>=0.21.1",
            "black>=23.11.0",
            "flake8>=6.1.0",
            "mypy>=1.7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "simple-music=simple_music.cli:main",
        ],
    },
    keywords="music flac lossless youtube download cache tagging cli",
)
