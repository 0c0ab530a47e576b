import logging
import os
import socket
from pathlib import Path

from crosslink.logging_config import configure_logging, level_from_env
from crosslink.ui.dash_app import create_dash_app

configure_logging(level_from_env())
logger = logging.getLogger("crosslink.app")

CONFIG_ROOT = Path(os.getenv("CROSSLINK_CONFIG_ROOT", Path(__file__).parent / "config"))

app = create_dash_app(CONFIG_ROOT)
server = app.server


def port_is_free(port: int, host: str = "localhost") -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex((host, port)) != 0


def pick_port(preferred: int, attempts: int = 50) -> int:
    """First free port at or above `preferred`; falls back to `preferred` itself."""
    for port in range(preferred, preferred + attempts):
        if port_is_free(port):
            return port
    return preferred


if __name__ == "__main__":
    preferred = int(os.getenv("PORT", "8051"))
    port = pick_port(preferred)
    if port != preferred:
        logger.warning("Preferred port busy, using another", extra={"preferred": preferred, "port": port})

    logger.info("Starting linked views server", extra={"config_root": str(CONFIG_ROOT), "port": port})
    app.run(host="0.0.0.0", port=port, debug=os.getenv("DEBUG", "0") == "1")
