# main.py
"""
Entry point: `uvicorn main:app` or `python main.py`.
"""
import logging, sys

import uvicorn

from retrieval_chat.api import app  # noqa
from retrieval_chat.config import settings

root = logging.getLogger()
if not root.handlers:
    h = logging.StreamHandler(sys.stdout)
    h.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(h)
    root.setLevel(settings.LOG_LEVEL.upper())


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8080)
