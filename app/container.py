"""Composition root: builds the long-lived collaborators once per process."""

from dataclasses import dataclass

from fastapi import Request

from app.config import settings
from app.database import SessionLocal
from app.services.action_validator import ActionValidator
from app.services.ai_director import AIDirector
from app.services.interfaces import ConversationStore, Messenger
from app.services.llm import OpenAIProvider
from app.services.messenger_service import MessengerService
from app.services.orchestrator import Orchestrator
from app.services.processing_lock import ProcessingLockManager
from app.services.storage_service import SqlConversationStore, SqlOrderLookup, SqlProductCatalog, SqlUsageMeter


@dataclass
class ServiceContainer:
    locks: ProcessingLockManager
    store: ConversationStore
    messenger: Messenger
    orchestrator: Orchestrator


def build_container() -> ServiceContainer:
    locks = ProcessingLockManager(
        default_ttl=settings.lock_default_ttl_seconds,
        sweep_interval=settings.lock_sweep_interval_seconds,
        poll_interval=settings.lock_poll_interval_seconds,
    )
    store = SqlConversationStore(SessionLocal, default_workspace_id=settings.default_workspace_id)
    catalog = SqlProductCatalog(SessionLocal)
    messenger = MessengerService(store.recipient_for)
    director = AIDirector(
        provider=OpenAIProvider(api_key=settings.openai_api_key, default_model=settings.ai_director_model),
        catalog=catalog,
        order_lookup=SqlOrderLookup(SessionLocal),
        usage_meter=SqlUsageMeter(SessionLocal),
    )
    orchestrator = Orchestrator(
        store=store,
        catalog=catalog,
        messenger=messenger,
        locks=locks,
        director=director,
        validator=ActionValidator(catalog),
    )
    return ServiceContainer(locks=locks, store=store, messenger=messenger, orchestrator=orchestrator)


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container
