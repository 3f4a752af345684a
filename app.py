from contextlib import asynccontextmanager
import logging

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from client import ProxyError, build_target_url, create_http_client, fetch_upstream

HOST = "0.0.0.0"
PORT = 443
FINAL_URL_HEADER = "Final-URL"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # one client for the whole process, shared by every request
    app.state.http_client = create_http_client()
    try:
        yield
    finally:
        await app.state.http_client.aclose()


app = FastAPI(lifespan=lifespan)


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def _error_response(err: ProxyError) -> JSONResponse:
    headers = {FINAL_URL_HEADER: str(err.url)} if err.url is not None else None
    return JSONResponse({"error": str(err)}, status_code=err.status_code, headers=headers)


@app.api_route("/proxy",
               methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "HEAD"])
async def proxy(request: Request, http_client: httpx.AsyncClient = Depends(get_http_client)):
    params = request.query_params.multi_items()
    path = request.query_params.get("path", "")

    try:
        url = build_target_url(path, params)
    except ProxyError as e:
        logging.error("%s", e)
        return _error_response(e)

    logging.info("Requesting upstream: %s", url)
    try:
        upstream = await fetch_upstream(http_client, url)
    except ProxyError as e:
        return _error_response(e)

    return Response(
        content=upstream.content,
        status_code=200,
        media_type=upstream.content_type,
        headers={FINAL_URL_HEADER: str(upstream.url)},
    )


def main():
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(app, host=HOST, port=PORT)


if __name__ == "__main__":
    main()
