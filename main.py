"""screencut HTTP server.

    python main.py                       # 127.0.0.1:8000
    python main.py --host 0.0.0.0 --port 9000 --config config.yaml
"""

from __future__ import annotations

import argparse
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()


@asynccontextmanager
async def lifespan(application: FastAPI):
    from screencut.utils.config import get_config
    from screencut.utils.deps_check import check_all, print_dep_status
    from screencut.utils.logging import Verbosity, info, setup_logging
    from screencut.utils.media_executor import configure_media_executor

    cfg = get_config()
    setup_logging(Verbosity.NORMAL, log_dir=Path(cfg.paths.log_dir))
    for d in (cfg.paths.projects_dir, cfg.paths.exports_dir):
        Path(d).mkdir(parents=True, exist_ok=True)
    configure_media_executor(
        ffmpeg_threads=cfg.rendering.ffmpeg_threads,
        nice=cfg.rendering.nice,
        max_concurrent=cfg.rendering.max_concurrent,
    )
    # Missing ffmpeg only fails renders; editing still works
    print_dep_status(check_all(cfg.ffmpeg_path))
    info(f"Projects in {cfg.paths.projects_dir}, exports in {cfg.paths.exports_dir}")
    yield


app = FastAPI(
    title="screencut",
    description="Edit screen recording timelines and export them to MP4",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.environ.get("CORS_ORIGINS", "*").split(",")],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["x-request-id"],
)


@app.middleware("http")
async def request_id(request: Request, call_next):
    from screencut.utils.logging import set_request_id

    rid = set_request_id(request.headers.get("x-request-id", ""))
    response = await call_next(request)
    response.headers["x-request-id"] = rid
    return response


from screencut.api.routes import router as api_router  # noqa: E402

app.include_router(api_router)


def main():
    parser = argparse.ArgumentParser(description="screencut server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--config", type=Path, default=None, help="config.yaml path")
    parser.add_argument("--reload", action="store_true", help="Reload on code changes")
    args = parser.parse_args()

    if args.config:
        from screencut.utils.config import load_config, set_config
        set_config(load_config(args.config))

    import uvicorn
    uvicorn.run("main:app" if args.reload else app, host=args.host, port=args.port,
                reload=args.reload, log_level="info")


if __name__ == "__main__":
    main()
