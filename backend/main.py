"""Run the FastAPI app for the Brain Proxy."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from main_config import ENV_FILE_PATH
from src.brain_proxy import ConfigurationError, GeminiProvider, Orchestrator, ProxySettings
from src.brain_proxy.config import DEFAULT_HOST, DEFAULT_MODEL, DEFAULT_PORT, LOGS_DIR
from src.brain_proxy.logging_config import setup_logging
from src.brain_proxy.providers import ModelProvider
from src.routers import gemini_router, native_router, openai_router

logger = logging.getLogger(__name__)


def create_app(orchestrator: Orchestrator, initialize_cache: bool = True) -> FastAPI:
    """Build the application around an already configured orchestrator."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if initialize_cache:
            await orchestrator.initialize_cache()
        yield

    app = FastAPI(title="Brain Proxy", version="0.1.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.include_router(native_router)
    app.include_router(openai_router)
    app.include_router(gemini_router)
    return app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="brain-proxy", description="Stateful Gemini proxy")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    parser.add_argument("--host", default=DEFAULT_HOST, help="Interface to bind")
    parser.add_argument("--cache", dest="cache_path", default=None, help="Project directory to build a context cache from")
    parser.add_argument("--cache-id", default=None, help="Use an existing context cache reference")
    parser.add_argument("--model", default=DEFAULT_MODEL, help="Model for the context cache and fallbacks")
    parser.add_argument("--list-models", action="store_true", help="List upstream models and exit")
    parser.add_argument("--debug", action="store_true", help="Verbose logs and dump the last response")
    return parser


def resolve_api_key() -> str:
    """GEMINI_API_KEY from the environment, else from the server's .env file."""
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        load_dotenv(ENV_FILE_PATH)
        api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ConfigurationError("GEMINI_API_KEY not set in environment or .env file")
    return api_key


async def print_models(provider: ModelProvider) -> None:
    async for info in provider.list_models():
        print(f"Model: {info.name}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, log_dir=LOGS_DIR)

    try:
        api_key = resolve_api_key()
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    provider = GeminiProvider(api_key=api_key)
    if args.list_models:
        asyncio.run(print_models(provider))
        return 0

    settings = ProxySettings(
        host=args.host,
        port=args.port,
        model=args.model,
        cache_path=args.cache_path,
        cache_id=args.cache_id,
        debug=args.debug,
        log_dir=LOGS_DIR,
        api_key=api_key,
    )
    logger.info("Brain Proxy starting on %s:%d (%s)", settings.host, settings.port, settings.mode_label)
    logger.info("Project root: %s", settings.project_root)

    app = create_app(Orchestrator(settings, provider))
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
