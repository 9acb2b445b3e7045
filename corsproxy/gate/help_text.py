import logging
from functools import lru_cache
from typing import Dict

from starlette.responses import Response

logger = logging.getLogger("uvicorn.error")


@lru_cache(maxsize=None)
def load_help_text(help_file: str) -> str:
    """Read a help document once per path. Failures are not cached."""
    with open(help_file, "r", encoding="utf-8") as fh:
        return fh.read()


def show_usage(help_file: str, headers: Dict[str, str]) -> Response:
    headers = dict(headers)
    headers["content-type"] = (
        "text/html" if help_file.endswith(".html") else "text/plain"
    )
    try:
        text = load_help_text(help_file)
    except OSError as e:
        logger.error(f"[Help] Cannot read help file {help_file}: {e}")
        return Response(status_code=500, headers=headers)
    return Response(content=text, status_code=200, headers=headers)
