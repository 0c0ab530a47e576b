from __future__ import annotations

import logging
from functools import partial
from pathlib import Path

import dash_bootstrap_components as dbc
from dash import Dash

from crosslink.config.loader import load_dataset_registry
from crosslink.services.session_service import FrameCache, LinkSessionManager
from crosslink.ui.callbacks.callbacks_sync import register_sync_callbacks
from crosslink.ui.config import AppConfig
from crosslink.ui.layout.build_layout import build_layout

logger = logging.getLogger(__name__)


def create_dash_app(config_root: Path | str = Path("config")) -> Dash:
    config_root = Path(config_root)

    # 1) Load Config
    global_config, cfg_by_name = load_dataset_registry(config_root)
    if not cfg_by_name:
        logger.warning("No datasets configured; the app will start empty", extra={"config_root": str(config_root)})

    # 2) Service Layer (data files are read lazily, sessions created per browser tab)
    frames = FrameCache(cfg_by_name, global_config.data_root)
    sessions = LinkSessionManager(global_config.link, frames)

    # 3) App Context
    ctx = AppConfig(
        config_root=config_root,
        global_config=global_config,
        dataset_names=sorted(cfg_by_name),
        frames=frames,
        sessions=sessions,
    )
    ctx.validate()

    app = Dash(
        __name__,
        external_stylesheets=[dbc.themes.FLATLY],
    )
    app.title = global_config.ui_title

    # a layout function is re-evaluated per page load: one link session per tab
    app.layout = partial(build_layout, ctx)

    register_sync_callbacks(app, ctx)

    logger.info(
        "Dash app created",
        extra={"config_root": str(config_root), "datasets": ctx.dataset_names},
    )
    return app
