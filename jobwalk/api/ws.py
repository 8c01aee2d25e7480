from fastapi import APIRouter, WebSocket

from jobwalk.realtime.hub import hub

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def ws(websocket: WebSocket) -> None:
    # ?token=<api key>; checked before the handshake is accepted
    await hub.serve(websocket)
