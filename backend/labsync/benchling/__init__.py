from .base import BaseLabClient
from .factory import get_lab_client
from .types import BenchlingEntity, TaskStatus

__all__ = ['BaseLabClient', 'BenchlingEntity', 'TaskStatus', 'get_lab_client']
