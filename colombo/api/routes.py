# colombo/api/routes.py
# Command/snapshot surface for the host shell. No view logic lives here.

from fastapi import APIRouter, Request, HTTPException, status

from colombo.core.errors import (
    ColomboError,
    IllegalStateError,
    InvalidArgument,
    LandmarkNotFound,
    LocationError,
    LocationNetworkError,
    LocationPermissionError,
    LocationUnknownError,
)
from colombo.models.dto import (
    AuthorizationRequest,
    DatabasePlace,
    DiscoverySnapshot,
    ErrorResponse,
    FixAccepted,
    GuideSnapshot,
    LocationErrorKind,
    LocationErrorRequest,
    LocationFix,
    PlaybackSession,
    RateRequest,
    SeekRequest,
    SelectLandmarkRequest,
    TrackerSnapshot,
)
from colombo.services.guide import TourGuide
from colombo.services.place_directory import PlaceDirectory

router = APIRouter()

_ERROR_STATUS = {
    InvalidArgument: status.HTTP_400_BAD_REQUEST,
    LandmarkNotFound: status.HTTP_404_NOT_FOUND,
    IllegalStateError: status.HTTP_409_CONFLICT,
}

_LOCATION_ERRORS = {
    LocationErrorKind.DENIED: LocationPermissionError,
    LocationErrorKind.UNKNOWN: LocationUnknownError,
    LocationErrorKind.NETWORK: LocationNetworkError,
}


def _guide(request: Request) -> TourGuide:
    return request.app.state.guide


def http_error_for(exc: ColomboError) -> HTTPException:
    code = next(
        (value for kind, value in _ERROR_STATUS.items() if isinstance(exc, kind)),
        status.HTTP_502_BAD_GATEWAY,
    )
    return HTTPException(
        status_code=code,
        detail=ErrorResponse(error=exc.code, detail=exc.detail).model_dump(),
    )

# ----------------------------------------------------------------------
# Location
# ----------------------------------------------------------------------
@router.post("/location/fixes", response_model=FixAccepted)
async def ingest_fix(request: Request, fix: LocationFix):
    guide = _guide(request)
    triggered = guide.ingest_fix(fix)
    return FixAccepted(triggered=triggered, tracker=guide.location())


@router.post("/location/errors", response_model=TrackerSnapshot)
async def report_location_error(request: Request, data: LocationErrorRequest):
    error: LocationError = _LOCATION_ERRORS[data.kind](data.detail)
    return _guide(request).report_location_error(error)


@router.post("/location/authorization", response_model=TrackerSnapshot)
async def set_authorization(request: Request, data: AuthorizationRequest):
    return _guide(request).set_authorization(data.status)


@router.post("/location/start", response_model=TrackerSnapshot)
async def start_location(request: Request):
    return _guide(request).start_location_updates()


@router.post("/location/stop", response_model=TrackerSnapshot)
async def stop_location(request: Request):
    return _guide(request).stop_location_updates()


@router.get("/location", response_model=TrackerSnapshot)
async def get_location(request: Request):
    return _guide(request).location()

@router.get("/snapshot", response_model=GuideSnapshot)
async def get_snapshot(request: Request):
    return _guide(request).snapshot()

# ----------------------------------------------------------------------
# Landmarks
# ----------------------------------------------------------------------
@router.get("/landmarks", response_model=DiscoverySnapshot)
async def get_landmarks(request: Request):
    return _guide(request).landmarks()


@router.post(
    "/landmarks/refresh",
    response_model=DiscoverySnapshot,
    status_code=status.HTTP_202_ACCEPTED,
    responses={409: {"model": ErrorResponse}},
)
async def refresh_landmarks(request: Request):
    guide = _guide(request)
    if not guide.refresh():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=ErrorResponse(
                error="NO_LOCATION",
                detail="No location available yet.",
            ).model_dump(),
        )
    return guide.landmarks()


@router.get(
    "/landmarks/{landmark_id:path}/place",
    response_model=DatabasePlace,
    responses={404: {"model": ErrorResponse}},
)
async def get_place(request: Request, landmark_id: str):
    directory: PlaceDirectory = request.app.state.place_directory
    place = await directory.get_place(landmark_id)
    if place is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=ErrorResponse(
                error="PLACE_NOT_FOUND",
                detail=f"No stored place for {landmark_id}.",
            ).model_dump(),
        )
    return place

# ----------------------------------------------------------------------
# Playback
# ----------------------------------------------------------------------
@router.get("/playback", response_model=PlaybackSession)
async def get_playback(request: Request):
    return _guide(request).session()


@router.post(
    "/playback",
    response_model=PlaybackSession,
    status_code=status.HTTP_202_ACCEPTED,
    responses={404: {"model": ErrorResponse}},
)
async def select_landmark(request: Request, data: SelectLandmarkRequest):
    try:
        return await _guide(request).select_landmark(data.landmark_id, data.language)
    except ColomboError as e:
        raise http_error_for(e)


@router.post("/playback/pause", response_model=PlaybackSession, responses={409: {"model": ErrorResponse}})
async def pause(request: Request):
    try:
        return _guide(request).playback.pause()
    except ColomboError as e:
        raise http_error_for(e)


@router.post("/playback/resume", response_model=PlaybackSession, responses={409: {"model": ErrorResponse}})
async def resume(request: Request):
    try:
        return _guide(request).playback.resume()
    except ColomboError as e:
        raise http_error_for(e)


@router.post("/playback/toggle", response_model=PlaybackSession, responses={409: {"model": ErrorResponse}})
async def toggle(request: Request):
    try:
        return _guide(request).playback.toggle()
    except ColomboError as e:
        raise http_error_for(e)


@router.post("/playback/seek", response_model=PlaybackSession, responses={400: {"model": ErrorResponse}})
async def seek(request: Request, data: SeekRequest):
    try:
        return _guide(request).playback.seek(data.seconds)
    except ColomboError as e:
        raise http_error_for(e)


@router.post("/playback/rate", response_model=PlaybackSession, responses={400: {"model": ErrorResponse}})
async def set_rate(request: Request, data: RateRequest):
    try:
        return _guide(request).playback.set_rate(data.rate)
    except ColomboError as e:
        raise http_error_for(e)


@router.post("/playback/stop", response_model=PlaybackSession)
async def stop(request: Request):
    return await _guide(request).playback.stop()


@router.post("/playback/acknowledge", response_model=PlaybackSession)
async def acknowledge(request: Request):
    return _guide(request).playback.acknowledge()
