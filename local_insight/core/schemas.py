from typing import Any, Dict, List, Optional, Tuple
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =========================
# Enums
# =========================
class Domain(str, Enum):
    FLOOD = "flood"
    WATER = "water"
    CRIME = "crime"
    STATS = "stats"


class QueryStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


# =========================
# LOCATION
# =========================
class Location(BaseModel):
    postcode: str
    lat: float
    lng: float
    district: Optional[str] = None
    region: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class PostcodeRequest(BaseModel):
    postcode: str = Field(min_length=5, max_length=16)

    @field_validator("postcode")
    @classmethod
    def strip_postcode(cls, value: str) -> str:
        cleaned = value.strip()
        if len(cleaned) < 5:
            raise ValueError("Postcode must be at least 5 characters")
        return cleaned


class LocationResponse(BaseModel):
    postcode: Optional[str] = None
    location: Optional[Location] = None
    label: str


# =========================
# NORMALIZED RECORDS
# =========================
class Coordinates(BaseModel):
    lat: float
    lng: float

    model_config = ConfigDict(frozen=True)


class NormalizedRecord(BaseModel):
    label: str = Field(min_length=1)
    identifier: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    authority: Optional[str] = None
    metadata: List[Tuple[str, Any]] = []


# =========================
# PANELS
# =========================
class SelectionRequest(BaseModel):
    stage: str
    value: Optional[str] = None
    branch: Optional[str] = None


class StageResponse(BaseModel):
    status: QueryStatus
    enabled: bool
    key: Optional[List[Any]] = None
    error: Optional[Dict[str, Any]] = None
    branches: Optional[Dict[str, "StageResponse"]] = None


class PanelResponse(BaseModel):
    domain: Domain
    postcode: str
    ready: bool
    stages: Dict[str, StageResponse]
    selections: Dict[str, Any]
    params: Dict[str, Any]
    view: Dict[str, Any]
