"""In-process stand-in for the Sprout sync API, served through TestClient."""
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, File, Header, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response

VALID_TOKEN = "test-token"
REQUIRED_FIELDS = ("id", "userId", "amount", "category", "date")


def _iso(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


class ApiError(Exception):
    def __init__(self, status_code: int, error: str, message: str):
        self.status_code = status_code
        self.error = error
        self.message = message


class FakeSyncBackend:
    """Server-side records keyed by id, with strictly increasing update stamps."""

    def __init__(self):
        self.records: dict[str, dict] = {}
        self.receipts: dict[str, bytes] = {}
        self.requests: list[str] = []
        self._last_stamp: datetime | None = None

    def stamp(self) -> datetime:
        now = datetime.now(timezone.utc)
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + timedelta(microseconds=1)
        self._last_stamp = now
        return now

    def save(self, body: dict) -> dict:
        for field in REQUIRED_FIELDS:
            if body.get(field) in (None, ""):
                raise ApiError(400, "ValidationError", f"{field} is required")

        existing = self.records.get(body["id"])
        now = self.stamp()
        record = {key: value for key, value in body.items() if key not in ("locallyModifiedAt", "remoteVersion")}
        record["version"] = existing["version"] + 1 if existing else 1
        record["createdAt"] = existing["createdAt"] if existing else _iso(now)
        record["updatedAt"] = _iso(now)
        record["_stamp"] = now
        self.records[body["id"]] = record
        return {"id": record["id"], "version": record["version"], "updatedAt": record["updatedAt"]}

    def changes_since(self, since: datetime) -> list[dict]:
        changed = [r for r in self.records.values() if r["_stamp"] > since]
        changed.sort(key=lambda r: r["_stamp"])
        return [{k: v for k, v in r.items() if k != "_stamp"} for r in changed]


def create_fake_sync_api(backend: FakeSyncBackend, token: str = VALID_TOKEN) -> FastAPI:
    app = FastAPI()

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.error, "message": exc.message, "timestamp": _iso(backend.stamp())},
        )

    def authorize(request: Request, authorization: str | None) -> None:
        backend.requests.append(f"{request.method} {request.url.path}")
        if authorization != f"Bearer {token}":
            raise ApiError(401, "Unauthorized", "Missing or invalid token")

    @app.post("/transactions", status_code=201)
    async def create_transaction(request: Request, authorization: str | None = Header(None)):
        authorize(request, authorization)
        return backend.save(await request.json())

    @app.put("/transactions/{transaction_id}")
    async def update_transaction(transaction_id: str, request: Request, authorization: str | None = Header(None)):
        authorize(request, authorization)
        if transaction_id not in backend.records:
            raise ApiError(404, "NotFound", f"Transaction {transaction_id} not found")
        body = await request.json()
        body["id"] = transaction_id
        return backend.save(body)

    @app.delete("/transactions/{transaction_id}")
    async def delete_transaction(transaction_id: str, request: Request, authorization: str | None = Header(None)):
        authorize(request, authorization)
        if backend.records.pop(transaction_id, None) is None:
            raise ApiError(404, "NotFound", f"Transaction {transaction_id} not found")
        return Response(status_code=204)

    @app.get("/sync")
    async def sync(
        request: Request,
        since: str,
        cursor: str | None = None,
        limit: int = Query(50, ge=1, le=100),
        authorization: str | None = Header(None),
    ):
        authorize(request, authorization)
        since_at = datetime.fromisoformat(since.replace("Z", "+00:00"))
        changed = backend.changes_since(since_at)

        offset = int(cursor) if cursor else 0
        page = changed[offset:offset + limit]
        has_more = offset + limit < len(changed)
        return {
            "transactions": page,
            "lastSync": _iso(backend.stamp()),
            "hasMore": has_more,
            "nextCursor": str(offset + limit) if has_more else None,
        }

    @app.post("/transactions/{transaction_id}/receipt")
    async def upload_receipt(
        transaction_id: str,
        request: Request,
        receipt: UploadFile = File(...),
        authorization: str | None = Header(None),
    ):
        authorize(request, authorization)
        backend.receipts[transaction_id] = await receipt.read()
        return {
            "receiptUrl": f"https://receipts.sprout.test/{transaction_id}/{receipt.filename}",
            "uploadedAt": _iso(backend.stamp()),
        }

    return app
