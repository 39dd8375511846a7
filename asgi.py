"""
asgi.py -- Application assembly for authapi.

Run with:  uvicorn asgi:app --reload
           python asgi.py
"""

import uvicorn

from api.main import app

__all__ = ["app"]

if __name__ == "__main__":
    uvicorn.run("asgi:app", host="127.0.0.1", port=8000)
