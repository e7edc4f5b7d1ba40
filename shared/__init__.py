"""
shared/__init__.py

Shared errors, models and helpers used across the backends, core and API packages.

- errors: the error taxonomy every component raises from
- models: common data structures and the outbound wire model
- utils: file-type, data-URL and identifier helpers
"""
