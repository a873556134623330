"""Application layer – use cases and pipeline orchestration."""

from panelcast.application.pipeline import PipelineResult, VideoPipeline

__all__ = ["PipelineResult", "VideoPipeline"]
