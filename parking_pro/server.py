from __future__ import annotations

import json
import logging
import os
import traceback
from dataclasses import dataclass
from functools import wraps
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from mcp.server.fastmcp import FastMCP

from . import nominatim, overpass
from .models import PARKING_TYPES
from .nominatim import NominatimClient
from .parking import ParkingSearch

# -------------------------
# Logging
# -------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("parking_pro")

# Include tracebacks in MCP tool errors. Turn off in production.
DEBUG_TOOL_ERRORS = os.getenv("DEBUG_TOOL_ERRORS", "false").lower() in ("1", "true", "yes", "y")

MISSING_FIELDS_ERROR = "Missing required fields: city, location, parkingType"
DEFAULT_PARKING_TIME = "12:00"


def parse_parking_time(value: Optional[str]) -> float:
    """``"HH:MM"`` as fractional hours. Not used for filtering yet."""
    raw = value or DEFAULT_PARKING_TIME
    try:
        hours, minutes = (int(part) for part in str(raw).split(":"))
    except ValueError:
        logger.warning("Unparseable parkingTime %r, using %s", raw, DEFAULT_PARKING_TIME)
        return 12.0
    return hours + minutes / 60


@dataclass
class Services:
    nominatim: NominatimClient
    search: ParkingSearch


def build_services_from_env() -> Services:
    geo = nominatim.build_client_from_env()
    return Services(nominatim=geo, search=ParkingSearch(overpass.build_client_from_env(), geo))


# -------------------------
# MCP error response helpers
# -------------------------
def _text_content(text: str) -> Dict[str, str]:
    return {"type": "text", "text": text}


def _tool_error_response(msg: str, detail: Optional[str] = None) -> Dict[str, Any]:
    if detail and DEBUG_TOOL_ERRORS:
        text = f"{msg}\n\n[detail]\n{detail}"
    else:
        text = msg
    return {"content": [_text_content(text)], "isError": True}


def safe_tool(fn):
    """Log tool exceptions with their traceback and answer with an MCP error payload."""
    @wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            tb = traceback.format_exc()
            try:
                kwargs_dump = json.dumps(kwargs, ensure_ascii=False)
            except (TypeError, ValueError):
                kwargs_dump = repr(kwargs)

            logger.error(
                "[TOOL ERROR] tool=%s kwargs=%s err=%s\n%s",
                fn.__name__,
                kwargs_dump,
                str(e),
                tb,
            )

            return _tool_error_response(
                "error while calling tool",
                detail=f"tool={fn.__name__}\nerr={str(e)}\n\ntrace:\n{tb}",
            )
    return wrapper


# -------------------------
# MCP server
# -------------------------
def build_mcp(services: Services) -> FastMCP:
    mcp = FastMCP(name="ParkingPro", stateless_http=True)

    @mcp.tool(description="Find up to 10 parking spots within 2 km of a location in a city, nearest first.")
    @safe_tool
    async def find_parking_spots(location: str, city: str, parking_type: str = "any") -> Dict[str, Any]:
        if parking_type not in PARKING_TYPES:
            return _tool_error_response(f"parking_type must be one of {', '.join(PARKING_TYPES)}")

        geo = await services.nominatim.geocode(location, city)
        result = await services.search.search(geo.coords, parking_type)
        return {
            "query": {"location": location, "city": city, "parking_type": parking_type},
            "coordinates": geo.coords.to_dict(),
            "geocode_source": geo.source,
            "tier": result.tier,
            "spots": result.to_dicts(),
        }

    return mcp


# -------------------------
# ASGI app
# -------------------------
def create_app(services: Optional[Services] = None, public_dir: Optional[str] = None) -> FastAPI:
    services = services or build_services_from_env()
    mcp = build_mcp(services)

    app = FastAPI(lifespan=lambda app: mcp.session_manager.run(), title="Parking Pro")
    app.state.services = services
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.mount("/mcp", mcp.streamable_http_app())

    @app.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/parking")
    async def find_parking(payload: Optional[Dict[str, Any]] = Body(None)):
        body = payload or {}
        city = body.get("city")
        location = body.get("location")
        parking_type = body.get("parkingType")
        logger.info("Received request: %s", body)

        if not city or not location or not parking_type:
            return JSONResponse(status_code=400, content={"error": MISSING_FIELDS_ERROR})
        if parking_type not in PARKING_TYPES:
            return JSONResponse(
                status_code=400,
                content={"error": f"parkingType must be one of: {', '.join(PARKING_TYPES)}"},
            )

        try:
            time_in_hours = parse_parking_time(body.get("parkingTime"))
            logger.info("Parsed time: %.2f hours", time_in_hours)

            geo = await services.nominatim.geocode(str(location), str(city))
            result = await services.search.search(geo.coords, parking_type)
        except Exception as e:
            logger.exception("Parking search error for %s", body)
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to fetch parking spots", "details": str(e)},
            )

        logger.info("Sending %d spots (geocode=%s, tier=%s)", len(result.spots), geo.source, result.tier)
        return {"spots": result.to_dicts()}

    @app.post("/report")
    async def report_parking(payload: Optional[Dict[str, Any]] = Body(None)):
        body = payload or {}
        if not body.get("location"):
            return JSONResponse(status_code=400, content={"success": False, "error": "Missing required field: location"})
        logger.info(
            "Parking report: location=%s free=%s rules=%s maxMinutes=%s",
            body.get("location"),
            body.get("free"),
            body.get("rules"),
            body.get("maxMinutes"),
        )
        return {"success": True}

    static_dir = Path(public_dir or os.getenv("PUBLIC_DIR", "public"))
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="public")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("parking_pro.server:app", host="0.0.0.0", port=port, reload=False)
