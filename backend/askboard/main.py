# askboard/main.py
import logging

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from askboard.api.v1 import chat as chat_router, conversations as conversations_router
from askboard.core.config import settings
from askboard.services.chat_service import ChatService
from askboard.services.conversation_store import ConversationStore
from askboard.services.orchestrator import TaskOrchestrator
from askboard.services.repository import JsonFileConversationRepository
from askboard.services.task_client import TaskClient

load_dotenv()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("main")


def build_services(app: FastAPI, client: TaskClient | None = None, store: ConversationStore | None = None) -> None:
    """Attach the task client, orchestrator, store and chat service to app.state."""
    client = client or TaskClient()
    store = store or ConversationStore(JsonFileConversationRepository(settings.CONVERSATIONS_PATH))
    orchestrator = TaskOrchestrator(client)

    app.state.task_client = client
    app.state.orchestrator = orchestrator
    app.state.conversation_store = store
    app.state.chat_service = ChatService(orchestrator, store)


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # register routers
    app.include_router(chat_router.router)
    app.include_router(conversations_router.router)

    @app.on_event("startup")
    async def startup():
        if not hasattr(app.state, "chat_service"):
            build_services(app)
        logger.info("askboard (%s) talking to %s", settings.APP_ENV, settings.API_BASE_URL)

    @app.get("/")
    async def root():
        return {"message": f"{settings.APP_NAME} backend running"}

    return app


app = create_app()
