"""
Panelcast – narrated slideshow videos from image panels.

  from panelcast.application.pipeline import VideoPipeline
  from panelcast.adapters import default_adapters
  pipeline = VideoPipeline(**default_adapters())
  result = asyncio.run(pipeline.run_segmented_video(chunks))

Swap any provider by implementing its port (panelcast.ports) and passing it
as an override to default_adapters().
"""

__version__ = "0.1.0"
