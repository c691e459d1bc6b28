"""Transform pipeline - compiled, ordered reshaping stages."""

from .base import Exemptions, Pipeline, PipelineResult, Stage
from .compiler import compile_pipeline

__all__ = [
    "Exemptions",
    "Pipeline",
    "PipelineResult",
    "Stage",
    "compile_pipeline",
]
