"""Entry point for the care chat server."""

import asyncio
import logging

from dotenv import load_dotenv

from .completion import SupabaseCompletionBackend, UnavailableCompletionBackend
from .config.settings import Settings
from .repository import create_client_manager, create_repositories
from .server import CareChatServer

logger = logging.getLogger(__name__)


def main() -> None:
    """Start the care chat server."""
    # Load environment variables
    load_dotenv()

    settings = Settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    client_manager = create_client_manager(settings)
    response_repo, session_store = create_repositories(settings, client_manager)

    if client_manager is not None:
        completion_backend = SupabaseCompletionBackend(
            client_manager,
            function_name=settings.ai.function_name,
            max_tokens=settings.ai.max_tokens,
        )
    else:
        logger.warning("Supabase is not configured; AI replies are unavailable")
        completion_backend = UnavailableCompletionBackend()

    server = CareChatServer(
        settings=settings,
        response_repo=response_repo,
        session_store=session_store,
        completion_backend=completion_backend,
    )

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Server shutdown.")


if __name__ == "__main__":
    main()
