"""
asgi.py -- Entry point that serves the JSON API and the HTML pages as one app.

api/main.py builds the FastAPI app (middleware, auth gate, JSON routers);
web/routes.py renders the login, home and static legal pages. Neither
imports the other, so the join happens here.

The request gate in auth/middleware.py wraps the web pages too: "/" and
"/index" answer an unauthenticated browser with a redirect to /login.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app
from web.routes import router as web_router

app.include_router(web_router, tags=["Pages"])
