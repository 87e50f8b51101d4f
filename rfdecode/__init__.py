#!/usr/bin/python3
# Initialisation for the rfdecode package.

__version__ = "0.1.0"

__all__ = [
    "audio",
    "core",
    "demodqueue",
    "errors",
    "filters",
    "params",
    "utils",
    "utils_logging",
    "utils_plotting",
]
