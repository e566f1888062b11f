"""The shared context every component is wired through."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from bluetui.core.config import Config
from bluetui.core.events import EventSource
from bluetui.core.network import NetworkCoordinator
from bluetui.core.operations import AdapterLocks, OperationCoordinator
from bluetui.core.pump import SignalPump
from bluetui.core.router import SignalRouter
from bluetui.core.store import StateStore
from bluetui.core.transfers import Prompt, TransferCoordinator
from bluetui.transports.base import Transport


@dataclass
class Context:
    """Explicitly passed state: transports, cache, coordinators, and workers.

    Created once per session. ``obex`` and ``network`` stay ``None`` when the
    corresponding daemon is disabled or unreachable.
    """

    config: Config
    bluez: Transport
    store: StateStore
    router: SignalRouter
    events: EventSource
    pump: SignalPump
    operations: OperationCoordinator
    send_locks: AdapterLocks
    executor: ThreadPoolExecutor
    obex: Transport | None = None
    transfers: TransferCoordinator | None = None
    nm: Transport | None = None
    network: NetworkCoordinator | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        config: Config,
        *,
        bluez: Transport,
        obex: Transport | None = None,
        nm: Transport | None = None,
        prompt: Prompt | None = None,
    ) -> Context:
        store = StateStore()
        router = SignalRouter(store)
        events = EventSource()
        executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="bluetui")
        send_locks = AdapterLocks()

        def current_adapter_path() -> str | None:
            adapter = store.current_adapter
            return adapter.path if adapter else None

        transfers = None
        if obex is not None:
            transfers = TransferCoordinator(
                obex,
                receive_dir=config.receive_dir,
                prompt=prompt,
                locks=send_locks,
                current_adapter=current_adapter_path,
            )
        network = None
        if nm is not None:
            network = NetworkCoordinator(nm, gsm_apn=config.gsm_apn, gsm_number=config.gsm_number)

        return cls(
            config=config,
            bluez=bluez,
            store=store,
            router=router,
            events=events,
            pump=SignalPump(router, events),
            operations=OperationCoordinator(executor),
            send_locks=send_locks,
            executor=executor,
            obex=obex,
            transfers=transfers,
            nm=nm,
            network=network,
        )
