[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "faildash"
version = "0.1.0"
description = "JSON API and SQLite store for tracking analysed CI/CD build failures, Jira tickets and MTTR"
requires-python = ">=3.10"
dependencies = [
    "werkzeug",
]
keywords = ["ci", "cd", "jenkins", "github-actions", "mttr", "build-failures", "jira", "wsgi"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Quality Assurance",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
faildash = "faildash.app:main"

[tool.hatch.build.targets.wheel]
packages = ["faildash"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
