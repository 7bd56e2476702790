import json
from typing import Optional, Union

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from telemetry_server.app.analytics.domains import TeamMapping
from telemetry_server.app.events.domains import (
    DeleteResult,
    EventActionResult,
    OrgTeamMappings,
    OrgTeamMappingsUpdate,
    SettingResponse,
    SettingUpdateRequest,
    TrashPage,
)
from telemetry_server.app.events.service import TRASH_DEFAULT_LIMIT, EventService
from telemetry_server.common.exceptions import APIException, error_response

ORG_TEAM_MAPPINGS_KEY = 'org_team_mappings'
MAPPING_REQUIRED_FIELDS = ('orgIdentifier', 'clientName', 'teamName')

router = APIRouter()


@router.delete('/events', response_model=DeleteResult)
def delete_events(session_id: Optional[str] = Query(None, alias='sessionId')) -> DeleteResult:
    """Moves a logical session to the trash, or every event without `sessionId`"""
    deleted = EventService.soft_delete_events(session_id)
    if session_id:
        message = f'Successfully deleted {deleted} events from session {session_id}'
    else:
        message = f'Successfully deleted {deleted} events'
    return DeleteResult(deleted=deleted, message=message, session_id=session_id)


@router.get('/events/deleted', response_model=TrashPage)
def list_deleted_events(
    limit: int = Query(TRASH_DEFAULT_LIMIT, ge=1),
    offset: int = Query(0, ge=0),
) -> TrashPage:
    return EventService.list_deleted(limit=limit, offset=offset)


@router.delete('/events/deleted', response_model=DeleteResult)
def empty_trash() -> DeleteResult:
    deleted = EventService.empty_trash()
    return DeleteResult(deleted=deleted, message=f'Permanently deleted {deleted} events')


@router.delete('/events/deleted/cleanup', response_model=DeleteResult)
def cleanup_trash(days: int = Query(30, ge=1, le=365)) -> DeleteResult:
    """Permanently removes events that have been in the trash for more than `days`"""
    deleted = EventService.cleanup_trash(days=days)
    return DeleteResult(deleted=deleted, message=f'Permanently deleted {deleted} events older than {days} days')


@router.delete('/events/{event_id:int}', response_model=EventActionResult)
def delete_event(event_id: int) -> Union[EventActionResult, JSONResponse]:
    if not EventService.soft_delete_event(event_id):
        return error_response(status.HTTP_404_NOT_FOUND, 'Event not found')
    return EventActionResult(message='Event deleted successfully', event_id=event_id)


@router.patch('/events/{event_id:int}/recover', response_model=EventActionResult)
def recover_event(event_id: int) -> Union[EventActionResult, JSONResponse]:
    if not EventService.recover_event(event_id):
        return error_response(status.HTTP_404_NOT_FOUND, 'Event not found or not deleted')
    return EventActionResult(message='Event recovered successfully', event_id=event_id)


@router.delete('/events/{event_id:int}/permanent', response_model=EventActionResult)
def permanently_delete_event(event_id: int) -> Union[EventActionResult, JSONResponse]:
    if not EventService.permanently_delete_event(event_id):
        return error_response(status.HTTP_404_NOT_FOUND, 'Event not found or not deleted')
    return EventActionResult(message='Event permanently deleted', event_id=event_id)


@router.get('/settings/org-team-mappings', response_model=OrgTeamMappings)
def get_org_team_mappings() -> OrgTeamMappings:
    mappings = EventService.get_json_setting(ORG_TEAM_MAPPINGS_KEY, default=[])
    if not isinstance(mappings, list):
        mappings = []
    return OrgTeamMappings(mappings=[mapping for mapping in mappings if isinstance(mapping, dict)])


@router.post('/settings/org-team-mappings', response_model=OrgTeamMappings)
def save_org_team_mappings(request: OrgTeamMappingsUpdate) -> OrgTeamMappings:
    for position, mapping in enumerate(request.mappings):
        if not all(mapping.get(field) for field in MAPPING_REQUIRED_FIELDS):
            raise APIException('Each mapping must have orgIdentifier, clientName, and teamName')
        try:
            TeamMapping.model_validate(mapping)
        except ValidationError as exc:
            fields = ', '.join(str(error['loc'][0]) for error in exc.errors() if error['loc'])
            raise APIException(f'Mapping {position} has wrongly typed fields: {fields}')
    EventService.save_setting(ORG_TEAM_MAPPINGS_KEY, json.dumps(request.mappings))
    return OrgTeamMappings(mappings=request.mappings)


@router.get('/settings/{key}', response_model=SettingResponse)
def get_setting(key: str) -> Union[SettingResponse, JSONResponse]:
    raw = EventService.get_setting(key)
    if raw is None:
        return error_response(status.HTTP_404_NOT_FOUND, 'Setting not found')
    try:
        value = json.loads(raw)
    except ValueError:
        # Stored by something other than this API
        value = raw
    return SettingResponse(key=key, value=value)


@router.put('/settings/{key}', response_model=SettingResponse)
def save_setting(key: str, request: SettingUpdateRequest) -> SettingResponse:
    EventService.save_setting(key, json.dumps(request.value))
    return SettingResponse(key=key, value=request.value)
