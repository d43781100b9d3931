import logging
from datetime import timedelta

from temporalio.client import Client
from temporalio.service import RPCError, RPCStatusCode

from app.core.config import settings
from app.core.errors import ProcessNotFoundError, SignalDeliveryError
from app.signals.options import StartOptions

logger = logging.getLogger(__name__)

INBOUND_CHAT_OR_DATA_SIGNAL = "HandleInboundChatOrData"


class SignalDispatcher:
    """
    Delivers named signals to workflows. No retries: a failed call surfaces to
    the caller, who owns the retry decision.
    """

    def __init__(self, client: Client, *, default_timeout: float | None = None):
        self._client = client
        self._default_timeout = default_timeout or settings.TEMPORAL_RPC_TIMEOUT_SECONDS

    def _rpc_timeout(self, timeout: float | None) -> timedelta:
        return timedelta(seconds=timeout or self._default_timeout)

    async def signal(self, process_id: str, signal_name: str, payload: dict, timeout: float | None = None) -> None:
        """Signal a running workflow. Raises ProcessNotFoundError when it is not running."""
        handle = self._client.get_workflow_handle(process_id)
        try:
            await handle.signal(signal_name, payload, rpc_timeout=self._rpc_timeout(timeout))
        except RPCError as exc:
            if exc.status == RPCStatusCode.NOT_FOUND:
                logger.warning("Workflow %s not found for signal %s", process_id, signal_name)
                raise ProcessNotFoundError(process_id) from exc
            logger.error("Signal %s to workflow %s failed: %s", signal_name, process_id, exc)
            raise SignalDeliveryError(f"Failed to signal workflow '{process_id}'") from exc

        logger.info("Signalled workflow %s with %s", process_id, signal_name)

    async def signal_or_start(
        self,
        proposed_process_id: str,
        process_type: str,
        signal_name: str,
        payload: dict,
        start_options: StartOptions,
        timeout: float | None = None,
    ) -> None:
        """
        Signal-with-start. The engine starts ``proposed_process_id`` if it is not
        running and delivers the signal atomically with the start; concurrent
        callers with the same id converge on one workflow.
        """
        try:
            await self._client.start_workflow(
                process_type,
                id=proposed_process_id,
                task_queue=start_options.task_queue,
                memo=start_options.memo,
                search_attributes=start_options.typed_search_attributes(),
                start_signal=signal_name,
                start_signal_args=[payload],
                rpc_timeout=self._rpc_timeout(timeout),
            )
        except RPCError as exc:
            logger.error(
                "Signal-with-start %s for workflow %s (%s) failed: %s",
                signal_name,
                proposed_process_id,
                process_type,
                exc,
            )
            raise SignalDeliveryError(f"Failed to signal or start workflow '{proposed_process_id}'") from exc

        logger.info(
            "Signal-with-start %s delivered to workflow %s on queue %s",
            signal_name,
            proposed_process_id,
            start_options.task_queue,
        )
