"""
Factory: return the lab client configured by settings.LAB_CLIENT.

Adding a backend:
  1. write an XxxClient(BaseLabClient) class
  2. add one line to _build_registry
  No service or sync code changes.
"""

from django.conf import settings

from .base import BaseLabClient


def _build_registry() -> dict[str, type[BaseLabClient]]:
    # deferred so requests is only imported when a client is built
    from .client import BenchlingClient

    return {
        'benchling': BenchlingClient,
    }


def get_lab_client() -> BaseLabClient:
    """
    Instantiate the client named by settings.LAB_CLIENT (default "benchling").

    Raises:
        ValueError: LAB_CLIENT is unknown
    """
    name = getattr(settings, 'LAB_CLIENT', 'benchling')
    registry = _build_registry()
    client_cls = registry.get(name)

    if client_cls is None:
        raise ValueError(
            f"Unknown LAB_CLIENT: {name!r}. "
            f"Known clients: {list(registry.keys())}"
        )

    return client_cls()
