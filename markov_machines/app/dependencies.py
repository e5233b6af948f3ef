"""
Composition root for the API.

Builds the process-wide singletons once (`@lru_cache`) and hands them to
routes through `Depends`: LLM adapter -> standard executor -> charter, plus
the SQL session repository and the run-loop engine, all wired into one
MachineService. Tests replace `get_machine_service` through
`app.dependency_overrides`.
"""

from functools import lru_cache

from fastapi import Depends

from ..config import settings
from ..data.demo_charter import build_demo_charter
from ..domain.charter import Charter
from ..execution.engine import MachineEngine
from ..execution.executor import StandardExecutor
from ..infrastructure.database.connection import get_engine, init_db
from ..llm.adapters.openai_adapter import OpenAIAdapter
from ..llm.interface import LLMProvider
from ..repositories.session import SessionRepository, SqlSessionRepository
from ..services.machine import MachineService


# LLM Provider (Singleton)
@lru_cache()
def get_llm_provider() -> LLMProvider:
    return OpenAIAdapter(
        api_key=settings.OPENAI_API_KEY,
        model_name=settings.OPENAI_MODEL
    )


# The Charter (Singleton): static, shared by every session
@lru_cache()
def get_charter(llm: LLMProvider = Depends(get_llm_provider)) -> Charter:
    return build_demo_charter(StandardExecutor(llm_provider=llm))


# Session Repository (Singleton)
# Note: InMemorySessionRepository must be a singleton too, or data is lost between requests!
@lru_cache()
def get_session_repository() -> SessionRepository:
    engine = get_engine()
    init_db(engine)
    return SqlSessionRepository(engine)


# The Engine (Singleton Service)
@lru_cache()
def get_machine_engine() -> MachineEngine:
    return MachineEngine(max_steps=settings.MAX_STEPS)


# The Machine Service (Singleton Service)
@lru_cache()
def get_machine_service(
    charter: Charter = Depends(get_charter),
    repository: SessionRepository = Depends(get_session_repository),
    engine: MachineEngine = Depends(get_machine_engine),
) -> MachineService:
    """
    Injects all necessary components into the MachineService.
    """
    return MachineService(
        charter=charter,
        repository=repository,
        engine=engine,
        initial_node_id=settings.INITIAL_NODE,
    )
