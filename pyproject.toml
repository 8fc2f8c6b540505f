[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kapir"
version = "0.1.0"
description = "Service layer for a shared-cab dispatch API: cabs, orders, routes, stop traffic and KPIs"
requires-python = ">=3.10"
dependencies = []
keywords = ["taxi", "dispatch", "ride-sharing", "routing", "eta"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kapir"]

[tool.pytest.ini_options]
addopts = "-ra"
