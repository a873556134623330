"""Panel cutter: split a tall page capture into full-width horizontal panels (PIL)."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from PIL import Image

from panelcast import config
from panelcast.domain.models import SourceRegion
from panelcast.ports.interfaces import IObjectStorage

logger = logging.getLogger(__name__)

MIN_GAP = 20
MIN_PANEL_HEIGHT = 20
CUT_MARGIN = 10
BOTTOM_MARGIN = 5


@dataclass(frozen=True)
class Panel:
    index: int
    region: SourceRegion
    path: str
    url: Optional[str] = None

    def to_dict(self) -> dict:
        """Chunk-file shape; add "narration" to each entry to drive a video run."""
        return {
            "imageIndex": self.index,
            "imageUrl": self.url or self.path,
            "startY": self.region.start_y,
            "endY": self.region.end_y,
            "height": self.region.height,
        }


def panel_bounds(height: int, cut_positions: Iterable[float]) -> List[Tuple[int, int]]:
    """(start_y, end_y) pairs for the panels between cut positions.

    Positions are clamped to ``height - 10``; a position closer than 20px to the
    previous kept one is dropped; the last panel stops 5px above the bottom;
    anything under 20px tall is skipped.
    """
    clamped = sorted(max(0, min(int(p), height - CUT_MARGIN)) for p in cut_positions)
    kept: List[int] = []
    for position in clamped:
        if kept and position - kept[-1] < MIN_GAP:
            continue
        kept.append(position)
    edges = sorted(set([0, *kept, height - BOTTOM_MARGIN]))
    bounds = []
    for start, end in zip(edges, edges[1:]):
        if end - start < MIN_PANEL_HEIGHT:
            logger.debug("Skipping panel %d-%d: too small", start, end)
            continue
        bounds.append((start, end))
    return bounds


class PanelCutter:
    def __init__(self, output_dir: str = os.path.join(config.OUTPUT_DIR, "panels")):
        self._output_dir = output_dir

    def cut(self, image_path: str, cut_positions: Iterable[float]) -> List[Panel]:
        os.makedirs(self._output_dir, exist_ok=True)
        stem = os.path.splitext(os.path.basename(image_path))[0]
        panels: List[Panel] = []
        with Image.open(image_path) as image:
            width, height = image.size
            logger.info("Cutting %s (%dx%d)", image_path, width, height)
            for start, end in panel_bounds(height, cut_positions):
                index = len(panels)
                path = os.path.join(self._output_dir, f"{stem}_panel_{index:02d}.png")
                image.crop((0, start, width, end)).save(path, format="PNG")
                panels.append(Panel(index=index, region=SourceRegion(start, end), path=path))
        logger.info("Cut %d panels", len(panels))
        return panels

    async def upload(self, panels: List[Panel], storage: IObjectStorage, prefix: str) -> List[Panel]:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        uploaded = []
        for panel in panels:
            with open(panel.path, "rb") as f:
                data = f.read()
            destination = f"{prefix.rstrip('/')}/cut_images/cut_{panel.index + 1}_{timestamp}.png"
            url = await storage.upload(data, destination, "image/png")
            uploaded.append(Panel(index=panel.index, region=panel.region, path=panel.path, url=url))
        return uploaded
