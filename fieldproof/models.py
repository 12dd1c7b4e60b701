from pydantic import BaseModel, Field
from typing import Dict, List, Optional


class PackMeta(BaseModel):
    """Metadata index entry for one published archive. Never a trust source."""
    packId: str
    contentId: str
    channel: str
    archiveHash: str
    reportCount: int
    uploaderId: str
    createdAt: int
    counts: Dict[str, int] = Field(default_factory=dict)


class ReportResult(BaseModel):
    id: Optional[str] = None
    okSig: bool
    okImg: bool
    duplicate: bool
    accepted: bool
    reasons: List[str] = Field(default_factory=list)


class VerificationSummary(BaseModel):
    contentId: Optional[str] = None
    packHash: str
    expectedHash: Optional[str] = None
    hashMatches: Optional[bool] = None
    packSigOk: Optional[bool] = None
    channel: Optional[str] = None
    uploaderId: Optional[str] = None
    total: int
    okSig: int
    okImg: int
    duplicates: int
    accepted: int
    rejected: int
    warnings: List[str] = Field(default_factory=list)
    results: List[ReportResult] = Field(default_factory=list)
