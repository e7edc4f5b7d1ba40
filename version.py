"""
Version information for the chat orchestration service.
This file follows semantic versioning (MAJOR.MINOR.PATCH):
- MAJOR version for incompatible changes to the HTTP API or the backend wire format
- MINOR version for backwards-compatible functionality, such as a new backend adapter
- PATCH version for backwards-compatible bug fixes
"""

__version__ = "0.3.0"
__version_info__ = tuple(map(int, __version__.split('.')))
