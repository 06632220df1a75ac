"""
Root pytest configuration for the Django project.

pytest-django loads config.settings_test (see pyproject.toml), which sets
environment defaults and swaps in SQLite, the in-memory channel layer and
eager Celery. App-specific fixtures live in each app's tests/conftest.py.
"""

import os

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings_test")
