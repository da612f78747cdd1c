[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xfrpc"
version = "2.9.644"
description = "Client-side building blocks for an frp-style reverse proxy: TCP stream multiplexing, SOCKS5 handshakes, UDP payload coding, TCP redirection and small networking helpers."
requires-python = ">=3.10"
dependencies = [
    "psutil",
]
keywords = [
    "frp",
    "reverse-proxy",
    "tunnel",
    "multiplexing",
    "socks5",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["xfrpc"]

[tool.pytest.ini_options]
addopts = "-ra"
