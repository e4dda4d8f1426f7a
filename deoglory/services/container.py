"""
Service Container - Dependency Injection Container

Holds the infrastructure the services need and lazily builds the services.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Lazy service holder; the database is injected"""

    db: object  # Database instance
    clock: Optional[Callable[[], datetime]] = None

    _study_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def study_service(self):
        """Get StudyService instance (lazy-loaded)"""
        if self._study_service is None:
            from deoglory.services.study_service import StudyService
            self._study_service = StudyService(self.db, clock=self.clock)
            logger.debug("StudyService instantiated")
        return self._study_service


# Global container instance (initialized at API startup)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() at startup before using services."
        )
    return _container


def init_container(db: object, clock: Optional[Callable[[], datetime]] = None) -> ServiceContainer:
    """Initialize the global service container; called once at startup"""
    global _container

    _container = ServiceContainer(db=db, clock=clock)
    logger.info("Service container initialized")
    return _container
