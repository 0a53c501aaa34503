"""
FastAPI application entry point.

Early initialization lives in `app/core/setup.py`, the application factory in
`app/core/application.py` and route handlers in `app/api/routes/`.

Run with:
    uvicorn app.main:app --reload
"""
from app.core.application import create_application
from app.core.setup import setup_application

# Must run before the app instance is created
setup_application()

app = create_application()
