"""Contact/pipeline enums."""

from enum import Enum


class PipelineStage(str, Enum):
    """Sales pipeline stage for a lead."""

    NEW = "new"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    QUOTED = "quoted"
    WON = "won"
    LOST = "lost"
