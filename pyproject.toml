[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "socialnet"
version = "0.1.0"
description = "A small social network backend over SQLite: posts, profiles, followers, notifications and real-time chat over HTTP and WebSockets."
requires-python = ">=3.10"
keywords = ["social network", "chat", "websocket", "notifications", "aiohttp", "sqlite"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content :: Message Boards",
    "Topic :: Communications :: Chat",
]
dependencies = [
    "aiohttp>=3.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
socialnet = "socialnet.app:main"

[tool.hatch.build.targets.wheel]
packages = ["socialnet"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
