from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel
from typing import List, Optional

HIGH_CONFIDENCE_SCORE = 70


class PartColor(str, Enum):
    HAMILTON_WHITE = "Hamilton White"
    SUN_GOLD_BLACK = "Sun Gold Black"
    ATLANTIS_BLUE = "Atlantis Blue"
    AYERS_GREY = "Ayers Grey"
    KU_GREY = "KU Grey"
    NEBULA_GREY = "Nebula Grey"
    INCOLOR = "Incolor"


class PartModel(str, Enum):
    B01_HEV = "B01 HEV"
    B01_PHEV19 = "B01 PHEV19"
    B01_PHEV35 = "B01 PHEV35"
    B03 = "B03"
    P3012_LOW = "P3012 LOW"
    P3012_MID = "P3012 MID"
    P3012_HIGH = "P3012 HIGH"
    P11 = "P11"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PartForm(CamelModel):
    """Editable fields of a catalog record"""
    part_number: str = ""
    part_name: str = ""
    color: PartColor = PartColor.HAMILTON_WHITE
    workstation: str = ""
    models: List[PartModel] = Field(default_factory=list)


class PartRecord(PartForm):
    # Identity
    id: str
    # Photos: public URLs once stored, inline data: URLs before upload
    image_urls: List[str] = Field(default_factory=list)
    # Epoch milliseconds
    timestamp: Optional[int] = None

    @property
    def has_photos(self) -> bool:
        return bool(self.image_urls)


class SimilarityMatch(BaseModel):
    id: str
    score: float
    reason: str


class RecognitionResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    matches: List[SimilarityMatch]
    detected_features: str = Field(alias="detectedFeatures")


class MatchedPart(BaseModel):
    part: PartRecord
    score: float
    reason: str

    @computed_field
    @property
    def is_high_confidence(self) -> bool:
        return self.score >= HIGH_CONFIDENCE_SCORE
