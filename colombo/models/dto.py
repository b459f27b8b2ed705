# colombo/models/dto.py
# Value types shared by the discovery and playback pipelines.

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from colombo.utils.haversine import haversine

# --- Geography ---

class Coordinate(BaseModel):
    """WGS84 position. Immutable and hashable."""
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90.0, le=90.0, description="Latitude in decimal degrees.")
    longitude: float = Field(..., ge=-180.0, le=180.0, description="Longitude in decimal degrees.")

    def distance_to(self, other: "Coordinate") -> float:
        """Great-circle distance to `other` in meters."""
        return haversine(self.latitude, self.longitude, other.latitude, other.longitude)

    def as_pipe(self) -> str:
        return f"{self.latitude}|{self.longitude}"

    def as_csv(self) -> str:
        return f"{self.latitude},{self.longitude}"


class LocationFix(BaseModel):
    """A raw reading from the location provider."""
    coordinate: Coordinate
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    accuracy: Optional[float] = Field(None, ge=0, description="Horizontal accuracy in meters.")


class PostalAddress(BaseModel):
    house_number: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    postcode: Optional[str] = None
    country: Optional[str] = None

    def formatted(self) -> Optional[str]:
        parts = [
            self.house_number,
            self.street,
            self.city,
            self.region,
            self.postcode,
            self.country,
        ]
        parts = [p for p in parts if p]
        return ", ".join(parts) if parts else None

# --- Discovery ---

class LandmarkCandidate(BaseModel):
    """A point of interest returned by a search provider, not yet confirmed."""
    external_id: str = Field(..., description="Provider identifier, e.g. 'node/123'.")
    name: str
    coordinate: Coordinate
    address: Optional[PostalAddress] = None
    phone: Optional[str] = None
    website_url: Optional[str] = None


class GeoArticle(BaseModel):
    """An encyclopedia article tagged with a location."""
    page_id: int
    title: str
    coordinate: Coordinate
    distance_meters: float = Field(..., ge=0)


class Landmark(BaseModel):
    """A candidate confirmed by at least one nearby article."""
    id: str
    candidate: LandmarkCandidate
    distance_from_user: float = Field(..., ge=0, description="Meters from the triggering coordinate.")

    @property
    def name(self) -> str:
        return self.candidate.name

    @property
    def coordinate(self) -> Coordinate:
        return self.candidate.coordinate


class DiscoveryStatus(str, Enum):
    IDLE = "IDLE"
    SEARCHING = "SEARCHING"
    READY = "READY"
    NO_CANDIDATES = "NO_CANDIDATES"
    NO_LANDMARKS = "NO_LANDMARKS"
    DEGRADED = "DEGRADED"
    PROVIDER_ERROR = "PROVIDER_ERROR"


class DiscoverySnapshot(BaseModel):
    """Read-only view of the last published discovery cycle."""
    status: DiscoveryStatus = DiscoveryStatus.IDLE
    landmarks: List[Landmark] = Field(default_factory=list)
    coordinate: Optional[Coordinate] = None
    message: Optional[str] = Field(None, description="Human-readable status line for the results banner.")
    is_searching: bool = False
    cycle: int = Field(0, description="Number of completed discovery cycles.")
    failed_enrichments: int = 0

# --- Location tracking ---

class AuthorizationStatus(str, Enum):
    NOT_DETERMINED = "NOT_DETERMINED"
    AUTHORIZED = "AUTHORIZED"
    DENIED = "DENIED"
    RESTRICTED = "RESTRICTED"


class TrackerStatus(str, Enum):
    STOPPED = "STOPPED"
    WAITING_FOR_PERMISSION = "WAITING_FOR_PERMISSION"
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"

# --- Errors ---

class ErrorInfo(BaseModel):
    """Machine code plus a message that can be shown to the user."""
    error: str = Field(..., description="A machine-readable error code.")
    detail: str = Field(..., description="A human-readable explanation.")


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="A machine-readable error code.")
    detail: str = Field(..., description="A human-readable explanation.")
    retry_after_seconds: Optional[int] = Field(None, description="Time until retry is allowed.")


class TrackerSnapshot(BaseModel):
    status: TrackerStatus
    authorization: AuthorizationStatus
    last_fix: Optional[LocationFix] = None
    last_emitted: Optional[Coordinate] = None
    last_error: Optional[ErrorInfo] = None

# --- Narration ---

class NarrationRequest(BaseModel):
    landmark: Landmark
    language_hint: Optional[str] = None


class NarrationResult(BaseModel):
    """Story text and audio location produced by the narration backend."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    place_name: str = Field(..., alias="placeName")
    subtitle: Optional[str] = None
    story_text: str = Field(..., alias="storyText")
    audio_uri: str = Field(..., alias="audioUri")


class PlaceProperties(BaseModel):
    category: Optional[str] = None
    landmark: Optional[bool] = None


class PlaceInfo(BaseModel):
    """`place` member of the narration request body."""
    model_config = ConfigDict(populate_by_name=True)

    map_box_id: Optional[str] = Field(None, alias="mapBoxId")
    map_kit_id: Optional[str] = Field(None, alias="mapKitId")
    text: str
    location: str = Field(..., description="'lat,lon'")
    place_name: Optional[str] = Field(None, alias="place_name")
    relevance: Optional[float] = None
    properties: Optional[PlaceProperties] = None


class PlaceVisitBody(BaseModel):
    place: PlaceInfo
    language: Optional[str] = None

# --- Playback ---

class PlaybackState(str, Enum):
    IDLE = "IDLE"
    GENERATING_STORY = "GENERATING_STORY"
    PREPARING_AUDIO = "PREPARING_AUDIO"
    PLAYING = "PLAYING"
    PAUSED = "PAUSED"
    FINISHED = "FINISHED"
    FAILED = "FAILED"


class PlaybackSession(BaseModel):
    state: PlaybackState = PlaybackState.IDLE
    current_time_seconds: float = 0.0
    duration_seconds: float = 0.0
    playback_rate: float = 1.0
    landmark_id: Optional[str] = None
    narration: Optional[NarrationResult] = None
    error: Optional[ErrorInfo] = Field(None, description="Failure reason while state is FAILED.")

# --- Supabase place records ---

class DatabasePlace(BaseModel):
    id: int
    mapbox_id: str
    place_name: str

# --- API Request / Response Models ---

class LocationErrorKind(str, Enum):
    DENIED = "denied"
    UNKNOWN = "unknown"
    NETWORK = "network"


class LocationErrorRequest(BaseModel):
    kind: LocationErrorKind = Field(..., description="Failure reported by the location provider.")
    detail: Optional[str] = None


class AuthorizationRequest(BaseModel):
    status: AuthorizationStatus


class FixAccepted(BaseModel):
    triggered: bool = Field(..., description="True when the fix started (or queued) a discovery cycle.")
    tracker: TrackerSnapshot


class SelectLandmarkRequest(BaseModel):
    landmark_id: str
    language: Optional[str] = Field(None, description="Narration language hint, e.g. 'de'.")


class SeekRequest(BaseModel):
    seconds: float


class RateRequest(BaseModel):
    rate: float


class GuideSnapshot(BaseModel):
    """Everything the host needs to render one frame."""
    location: TrackerSnapshot
    landmarks: DiscoverySnapshot
    playback: PlaybackSession
