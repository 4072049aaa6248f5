"""Analysis pipeline contract and the bundled JSON-declaration pipeline."""

from .declarative import DeclarativePipeline
from .interface import AnalysisPipeline, BeforeBuildActionsHook, PipelineFactory, PipelineVariant

__all__ = [
    "AnalysisPipeline",
    "BeforeBuildActionsHook",
    "DeclarativePipeline",
    "PipelineFactory",
    "PipelineVariant",
]
