import asyncio
import logging

from temporalio.client import Client
from temporalio.service import RPCError

from app.core.config import settings
from app.core.errors import InfrastructureError
from app.signals.dispatcher import SignalDispatcher

logger = logging.getLogger(__name__)

_client: Client | None = None
_lock = asyncio.Lock()


async def get_temporal_client() -> Client:
    global _client
    if _client is not None:
        return _client

    async with _lock:
        if _client is None:
            try:
                _client = await Client.connect(settings.TEMPORAL_HOST, namespace=settings.TEMPORAL_NAMESPACE)
            except (RPCError, RuntimeError) as exc:
                logger.error("Cannot connect to Temporal at %s: %s", settings.TEMPORAL_HOST, exc)
                raise InfrastructureError("Workflow engine connection failed") from exc
            logger.info(
                "Connected to Temporal at %s (namespace=%s)",
                settings.TEMPORAL_HOST,
                settings.TEMPORAL_NAMESPACE,
            )
    return _client


async def get_signal_dispatcher() -> SignalDispatcher:
    client = await get_temporal_client()
    return SignalDispatcher(client)
