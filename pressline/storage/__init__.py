"""Storage layer for topics, content, pipeline runs and approvals."""

from .database import PipelineDatabase, init_database
from .repository import ContentStore

__all__ = ["PipelineDatabase", "ContentStore", "init_database"]
