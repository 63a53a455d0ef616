"""
Pydantic schemas for the control surface and host messages.
"""

from typing import Dict, Optional

from pydantic import BaseModel


class EngineConfig(BaseModel):
    """User switches shown in the extension popup."""
    enabled: bool = True
    autoCapture: bool = True

    @property
    def capturing(self) -> bool:
        return self.enabled and self.autoCapture


class ConfigUpdate(BaseModel):
    """Partial update of EngineConfig; unset fields are left alone."""
    enabled: Optional[bool] = None
    autoCapture: Optional[bool] = None

    def changes(self) -> Dict[str, bool]:
        return self.model_dump(exclude_none=True)


class StatsResponse(BaseModel):
    """Counters for the popup and status panel."""
    recordCount: int = 0
    processedCount: int = 0
    distinctRecords: int = 0
    pendingDownloads: int = 0
    openStreams: int = 0
    responsesCaptured: int = 0
    parseErrors: int = 0
    correlationFailures: int = 0
    writeFailures: int = 0


class FileSavedMessage(BaseModel):
    """Host report that a download finished writing to disk."""
    fullPath: str
    originUrl: str = ""


class IngestRequest(BaseModel):
    """Whole response body posted by a host that cannot stream chunks."""
    url: str
    body: str = ""


class RecordSummary(BaseModel):
    record_id: str
    filename: str
    content_hash: Optional[str] = None
    base_name: str
    pack_name: Optional[str] = None
    category: str = "Unknown"
    source_url: str = ""
    captured_at: str = ""

