import logging
import sys
from pathlib import Path
from typing import Optional

import click
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cc_switch import __version__
from cc_switch.api import providers
from cc_switch.config import get_config_dir, get_host, get_port, set_config_dir_override
from cc_switch.errors import CCSwitchError
from cc_switch.observability import TRACE_HEADER, accept_trace_id, setup_logging, trace_context
from cc_switch.services.provider_service import ProviderService
from cc_switch.services.provider_store import ProviderStore
from cc_switch.services.shared_context import SharedContext

# Load .env from backend directory
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)
setup_logging()
logger = logging.getLogger(__name__)


def _format_validation_error(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err.get("loc", ()) if x != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "invalid request: " + "; ".join(parts)


def create_app(service: Optional[ProviderService] = None) -> FastAPI:
    if service is None:
        service = ProviderService(SharedContext(ProviderStore(get_config_dir())))

    app = FastAPI(title="CC Switch API", version=__version__)
    app.state.provider_service = service

    @app.middleware("http")
    async def trace_id_middleware(request: Request, call_next):
        trace_id = accept_trace_id(request.headers.get(TRACE_HEADER))
        with trace_context(trace_id):
            response = await call_next(request)
        response.headers[TRACE_HEADER] = trace_id
        return response

    @app.exception_handler(CCSwitchError)
    async def engine_error_handler(request: Request, exc: CCSwitchError):
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"success": False, "error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"success": False, "error": _format_validation_error(exc)})

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {"success": True, "data": {"status": "ok", "version": __version__}}

    app.include_router(providers.router, prefix="/api", tags=["providers"])
    return app


app = create_app()


@click.command("cc-switch-server")
@click.option("--host", default=None, help="Bind address (default: CC_SWITCH_HOST or 127.0.0.1)")
@click.option("--port", "-p", type=int, default=None, help="Listen port (default: CC_SWITCH_PORT or 8766)")
@click.option(
    "--config-dir",
    default=None,
    help="Override the data directory (default ~/.cc-switch) for this process",
)
@click.option("--log-level", default=None, help="Logging level, e.g. DEBUG")
@click.version_option(__version__)
def cli(host: Optional[str], port: Optional[int], config_dir: Optional[str], log_level: Optional[str]) -> None:
    """Serve the CC Switch provider API over HTTP."""
    if log_level:
        setup_logging(log_level)

    if config_dir and config_dir.strip():
        path = Path(config_dir.strip()).expanduser()
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            click.echo(f"Failed to create config dir {path}: {e}", err=True)
            sys.exit(1)
        set_config_dir_override(path)

    host = host or get_host()
    port = port or get_port()
    logger.info("Starting CC Switch %s on http://%s:%s (data dir %s)", __version__, host, port, get_config_dir())
    uvicorn.run(create_app(), host=host, port=port, log_level=(log_level or "info").lower())


if __name__ == "__main__":
    cli()
