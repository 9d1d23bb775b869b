import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from product_search.config import get_settings

from .routers import products

settings = get_settings()
logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(levelname)s - %(name)s - %(message)s")

app = FastAPI(title="Product Search", version="0.1.0")

# The browser front-end calls the search endpoint directly
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
def healthcheck():
    return {"status": "ok", "env": settings.env}


app.include_router(products.router, tags=["products"])
