from datetime import datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.services.prompts import LabType


class AnalysisMode(str, Enum):
    COMBINED = "combined"  # one call with every image
    SEQUENTIAL = "sequential"  # one call per image, then a summary call


class AnalysisRequest(BaseModel):
    category: str = Field(validation_alias=AliasChoices("category", "labType", "lab_type"))
    images: list[str] = Field(default_factory=list)
    mode: AnalysisMode = AnalysisMode.COMBINED


class AnalysisResult(BaseModel):
    id: str
    category: LabType
    images: list[str]
    analysis: str = Field(min_length=1)
    timestamp: datetime

    model_config = ConfigDict(frozen=True)


class HistoryResponse(BaseModel):
    items: list[AnalysisResult]
    capacity: int


class LabResponse(BaseModel):
    id: LabType
    icon: str
    title: str
    description: str
