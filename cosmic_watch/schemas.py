from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, computed_field

from . import risk


class Scored(BaseModel):
    """Derived risk fields, recomputed from the flat metrics on every dump."""

    @computed_field
    @property
    def risk_score(self) -> int:
        return risk.score(self)

    @computed_field
    @property
    def risk_level(self) -> risk.RiskLevel:
        return risk.classify(self.risk_score, getattr(self, "hazardous", False))


class NeoBase(BaseModel):
    neo_id: str
    name: str
    close_approach_date: date | None = None
    diameter_max_meters: float
    velocity_kps: float
    miss_distance_astronomical: float
    hazardous: bool


class NeoCreate(NeoBase):
    pass


class NeoRead(NeoBase, Scored):
    model_config = ConfigDict(from_attributes=True)

    id: int


class NearEarthObject(Scored):
    id: str
    name: str
    close_approach_date: date | None = None
    diameter_max_meters: float
    miss_distance_astronomical: float
    miss_distance_km: float
    velocity_kps: float
    velocity_kph: float
    hazardous: bool = False

    @computed_field
    @property
    def display_name(self) -> str:
        return risk.display_name(self.name)


class WatchlistCreate(BaseModel):
    asteroid_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    notes: str | None = ""
    diameter_max_meters: float | None = Field(default=None, ge=0)
    miss_distance_astronomical: float | None = Field(default=None, ge=0)
    velocity_kps: float | None = Field(default=None, ge=0)
    hazardous: bool = False


class WatchlistRead(WatchlistCreate, Scored):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: str
    saved_at: datetime


class WatchlistResponse(BaseModel):
    watchlist: list[WatchlistRead]


class SubscriberCreate(BaseModel):
    url: str


class SubscriberRead(SubscriberCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
