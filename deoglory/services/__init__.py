"""
Service Layer Package

Business logic services between the HTTP layer (deoglory.api) and the data
access layer (deoglory.db.queries).

- StudyService: stage completion, streak recovery, Final Challenge, achievements
"""

from deoglory.services.container import ServiceContainer, get_container, init_container

__all__ = [
    "ServiceContainer",
    "get_container",
    "init_container",
]
