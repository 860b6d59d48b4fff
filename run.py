from __future__ import annotations

import logging
import os
from typing import Optional

from dotenv import load_dotenv

# Must run before mes_frontend.config is imported.
load_dotenv()

from mes_frontend import create_app  # noqa: E402


def _is_debug_enabled(flag: Optional[str]) -> bool:
    if not flag:
        return False
    return flag.lower() in {"1", "true", "yes", "on"}


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = create_app()

    host = os.getenv("FLASK_RUN_HOST", "0.0.0.0")
    port = int(os.getenv("FLASK_RUN_PORT", "5000"))
    debug = _is_debug_enabled(os.getenv("FLASK_DEBUG"))

    app.run(host=host, port=port, debug=debug, use_reloader=debug, threaded=True)


if __name__ == "__main__":
    main()
