from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from fairsettle.dependencies import Services, get_services
from fairsettle.redis_subscriber import RedisSubscriber
from fairsettle.services.keno_service import KENO_CHANNEL
from fairsettle.services.plinko_service import PLINKO_CHANNEL
from fairsettle.services.pool_service import POOL_CHANNEL
from fairsettle.services.settlement_orchestrator import BATTLE_CHANNEL
from fairsettle.services.wheel_service import WHEEL_CHANNEL

CHANNELS = (BATTLE_CHANNEL, PLINKO_CHANNEL, KENO_CHANNEL, WHEEL_CHANNEL, POOL_CHANNEL)

event_router = APIRouter(tags=["events"])


class EventAPI:
    @staticmethod
    @event_router.get("/events")
    async def stream_events(
        channel: List[str] = Query(default=list(CHANNELS)),
        services: Services = Depends(get_services),
    ):
        unknown = [c for c in channel if c not in CHANNELS]
        if unknown:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown channels: {unknown}")
        if services.redis is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Event stream is disabled")

        async def snapshot():
            events = []
            if WHEEL_CHANNEL in channel:
                wheel_round = await services.wheel.current_round()
                if wheel_round is not None:
                    events.append({"event": "wheel:current", "data": wheel_round.model_dump(mode="json")})
            return events

        subscriber = RedisSubscriber(channel, snapshot)
        return StreamingResponse(
            subscriber.event_generator(services.redis), media_type="text/event-stream"
        )
