"""
Background click processing: queue consumers and the pipeline that owns them.
"""

from .worker import ClickWorker
from .pipeline import ClickPipeline

__all__ = ["ClickWorker", "ClickPipeline"]
