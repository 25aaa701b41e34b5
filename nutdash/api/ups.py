from typing import Any, Dict, List, Optional, Sequence

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from nutdash.database.models import UPSSystem
from nutdash.database.store import RecordStore, endpoints_from_settings
from nutdash.nut.errors import NUTError
from nutdash.nut.events import StatusTracker
from nutdash.nut.mapping import STATUS_UNKNOWN
from nutdash.nut.models import PollResult, ServerEndpoint
from nutdash.nut.poller import MultiServerPoller

logger = logging.getLogger(__name__)

router = APIRouter()


class UPSSystemResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: Optional[int] = Field(None, description="Registered UPS id, if registered")
    name: str = Field(description="Registered name, or the NUT device name")
    nickname: Optional[str] = None
    display_name: str
    ups_name: str = Field(description="Device name on the NUT server")
    nut_server_id: Optional[int] = None
    model: Optional[str] = None
    manufacturer: Optional[str] = None
    serial: Optional[str] = None
    status: str = STATUS_UNKNOWN
    status_label: str = STATUS_UNKNOWN
    battery_charge: Optional[int] = Field(None, description="Battery charge percentage (0-100)")
    battery_voltage: Optional[float] = None
    input_voltage: Optional[float] = Field(None, description="Input voltage from mains")
    output_voltage: Optional[float] = Field(None, description="Output voltage to devices")
    load: Optional[int] = Field(None, description="UPS load percentage")
    runtime_remaining: Optional[int] = Field(None, description="Estimated runtime in minutes")
    temperature: Optional[float] = None
    details: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    error: Optional[str] = None


_LIVE_FIELDS = (
    "model", "manufacturer", "serial", "status", "status_label", "battery_charge",
    "battery_voltage", "input_voltage", "output_voltage", "load", "runtime_remaining",
    "temperature", "details", "error",
)


def combine_with_registered(result: PollResult, registered: Sequence[UPSSystem]) -> List[UPSSystemResponse]:
    """
    Join live snapshots with registered UPS records.

    Registered devices are matched by (server id, device name); those with
    no live reading are reported as Unknown. With nothing registered, every
    live device is returned as is.
    """
    if not registered:
        return [
            UPSSystemResponse(
                name=entry.device.name,
                display_name=entry.device.display_name,
                ups_name=entry.device.name,
                nut_server_id=entry.server_id,
                **{f: getattr(entry.device, f) for f in _LIVE_FIELDS},
            )
            for entry in result.entries
        ]

    combined = []
    for system in registered:
        live = result.find(system.nut_server_id, system.ups_name)
        base: Dict[str, Any] = {
            "id": system.id,
            "name": system.name,
            "nickname": system.nickname,
            "ups_name": system.ups_name,
            "nut_server_id": system.nut_server_id,
        }
        if live is None:
            combined.append(UPSSystemResponse(display_name=system.nickname or system.name, **base))
            continue
        combined.append(
            UPSSystemResponse(
                display_name=system.nickname or live.display_name or system.name,
                **base,
                **{f: getattr(live, f) for f in _LIVE_FIELDS},
            )
        )
    return combined


def get_poller(request: Request) -> MultiServerPoller:
    return request.app.state.poller


def get_store(request: Request) -> Optional[RecordStore]:
    return getattr(request.app.state, "store", None)


def get_tracker(request: Request) -> Optional[StatusTracker]:
    return getattr(request.app.state, "tracker", None)


async def load_endpoints(store: Optional[RecordStore]) -> List[ServerEndpoint]:
    if store is None:
        return endpoints_from_settings()
    return await store.list_endpoints()


@router.get(
    "/ups/systems",
    response_model=List[UPSSystemResponse],
    response_model_by_alias=True,
    summary="Get current UPS systems",
    responses={
        404: {"description": "No NUT servers are configured."},
        500: {"description": "The server configuration could not be loaded."},
    },
)
async def get_ups_systems(
    poller: MultiServerPoller = Depends(get_poller),
    store: Optional[RecordStore] = Depends(get_store),
    tracker: Optional[StatusTracker] = Depends(get_tracker),
) -> List[UPSSystemResponse]:
    """
    Poll every configured NUT server now and return the merged UPS list.
    """
    try:
        endpoints = await load_endpoints(store)
        registered = await store.list_registered_devices() if store is not None else []
    except Exception as e:
        logger.exception("Failed to load NUT server configuration")
        raise HTTPException(status_code=500, detail=f"Database error: {e}")

    if not endpoints:
        raise HTTPException(status_code=404, detail="No NUT servers configured")

    result = await poller.poll_all(endpoints)
    systems = combine_with_registered(result, registered)

    if tracker is not None:
        await tracker.observe(result)

    if store is not None:
        try:
            await store.record_battery_history(
                (system.id, system.battery_charge) for system in systems
            )
        except Exception:
            logger.exception("Failed to record battery history")

    return systems


@router.get(
    "/ups/servers/{server_id}/devices",
    response_model=List[str],
    summary="List the UPS devices on one NUT server",
    responses={
        404: {"description": "The NUT server is not configured."},
        502: {"description": "The NUT server could not be reached."},
    },
)
async def list_server_devices(
    server_id: int,
    poller: MultiServerPoller = Depends(get_poller),
    store: Optional[RecordStore] = Depends(get_store),
) -> List[str]:
    try:
        endpoints = await load_endpoints(store)
    except Exception as e:
        logger.exception("Failed to load NUT server configuration")
        raise HTTPException(status_code=500, detail=f"Database error: {e}")

    endpoint = next((e for e in endpoints if e.id == server_id), None)
    if endpoint is None:
        raise HTTPException(status_code=404, detail="NUT server not found")

    try:
        connection = await poller.manager.acquire(endpoint)
        return await poller.aggregator.fetcher.list_devices(connection)
    except NUTError as e:
        raise HTTPException(status_code=502, detail=f"Failed to get UPS list: {e}")
