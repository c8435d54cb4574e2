[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "zbplugins"
version = "0.1.0"
description = "Chat-bot plugin logic: group reminder timers, MIDI composing and ear training, song guessing, group management helpers and more"
requires-python = ">=3.10"
dependencies = [
    "mido",
    "requests",
    "pillow",
]
keywords = ["chatbot", "qq", "timer", "cron", "midi", "group-management", "plugins"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Communications :: Chat",
    "Topic :: Multimedia :: Sound/Audio :: MIDI",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["zbplugins"]

[tool.pytest.ini_options]
addopts = "-ra"
