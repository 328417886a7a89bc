"""Unified FastAPI server exposing the assistant and its mailbox."""

from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
import uvicorn

from assistant_module.api import config_from_args, create_app as create_assistant_app
from assistant_module.config import AssistantConfig
from assistant_module.service import Orchestrator
from assistant_module.settings import SettingsStore
from assistant_module.utils import setup_logging
from mailbox_store import Mailbox, default_mailbox_path, load_mailbox

logger = logging.getLogger(__name__)


# ---------- FastAPI Factory ----------
def create_app(
    log_dir: str = "./logs",
    config: Optional[AssistantConfig] = None,
    *,
    mailbox: Optional[Mailbox] = None,
    settings: Optional[SettingsStore] = None,
    initialize: bool = True,
) -> FastAPI:
    setup_logging(log_dir, logging.INFO)

    config = config or AssistantConfig()
    mailbox = mailbox if mailbox is not None else load_mailbox(default_mailbox_path())
    settings = settings or SettingsStore(locale=config.locale)
    orchestrator = Orchestrator(config, mailbox=mailbox, settings=settings)

    app = create_assistant_app(orchestrator, initialize=initialize)
    app.title = "Mail Assistant Server"
    app.state.mailbox = mailbox
    app.state.settings = settings

    @app.get("/mailbox")
    def mailbox_overview(limit: int = Query(5, gt=0)) -> Dict[str, Any]:
        box: Mailbox = app.state.mailbox
        latest = box.latest()
        return {
            "total": box.total_count(),
            "unread": box.unread_count(),
            "latest": latest.to_dict() if latest else None,
            "recent": [record.to_dict() for record in box.all()[:limit]],
        }

    @app.get("/mailbox/search")
    def mailbox_search(q: str = Query(..., min_length=1)) -> List[Dict[str, Any]]:
        logger.info("Searching mailbox for '%s'", q)
        if not q.strip():
            raise HTTPException(status_code=400, detail="query must not be empty")
        return [record.to_dict() for record in app.state.mailbox.search(q)]

    return app


# ---------- CLI ----------
def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the mail assistant server.")
    parser.add_argument("--host", default="0.0.0.0", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=8010, help="Port to bind.")
    parser.add_argument("--log_dir", default="./logs", help="Directory for application logs.")
    parser.add_argument("--mailbox", help="Path to a JSON mailbox file. Defaults to the bundled sample.")
    parser.add_argument("--llm_endpoint", default="http://localhost:11434", help="Inference server base URL.")
    parser.add_argument("--llm_model", default="qwen2.5:3b", help="Model name for generation.")
    parser.add_argument("--temperature", type=float, default=0.7, help="Sampling temperature.")
    parser.add_argument("--request_timeout", type=float, default=30.0, help="Timeout for generation calls (seconds).")
    parser.add_argument("--probe_timeout", type=float, default=5.0, help="Timeout for the liveness probe (seconds).")
    parser.add_argument("--native_streaming", action="store_true", help="Relay server-side streaming fragments.")
    parser.add_argument("--locale", help="Voice locale preference, e.g. fr_FR.")
    parser.add_argument("--disable_tts", action="store_true", help="Never hand replies to speech output.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    config = config_from_args(args)
    mailbox = load_mailbox(args.mailbox or default_mailbox_path())
    settings = SettingsStore(locale=args.locale, tts_enabled=not args.disable_tts)

    app = create_app(args.log_dir, config, mailbox=mailbox, settings=settings)
    logger.info("Starting mail assistant server on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
