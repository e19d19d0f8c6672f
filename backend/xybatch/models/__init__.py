"""SQLAlchemy ORM models package."""
from xybatch.models.workflow import Workflow
from xybatch.models.generation import Generation

__all__ = [
    "Workflow",
    "Generation",
]
