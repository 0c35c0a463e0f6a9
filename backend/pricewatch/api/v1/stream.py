"""WebSocket stream of a product's observations, alerts and insights."""

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from pricewatch.services.distribution import DistributionEvent

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.websocket("/{product_id}/stream")
async def stream_product_events(websocket: WebSocket, product_id: str):
    """Push every event published for a product as JSON.

    The first message acknowledges the subscription; later messages are
    DistributionEvent dicts in publish order.
    """
    service = websocket.app.state.tracking_service
    await websocket.accept()

    async def forward(event: DistributionEvent) -> None:
        await websocket.send_json(event.to_dict())

    unsubscribe = service.subscribe(product_id, forward)
    logger.info("stream_opened", product_id=product_id)
    try:
        await websocket.send_json({"kind": "subscribed", "product_id": product_id})
        while True:
            # Client messages are ignored; receiving detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        unsubscribe()
        logger.info("stream_closed", product_id=product_id)
