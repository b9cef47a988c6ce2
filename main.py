import logging
import os
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from fastapi.staticfiles import StaticFiles

from database import RecordStore
from errors import PlatformError, StorageError
from media import MediaStore
from operations import GalleryService
from realtime import Broadcaster
from schemas import CommentRequest, LikeRequest, LoginRequest, RegisterRequest
from settings import Settings, configure_logging

logger = logging.getLogger("gallery.api")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login")


def get_service(request: Request) -> GalleryService:
    return request.app.state.service


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    # App and CORS
    app = FastAPI(title="Gallery Share API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    broadcaster = Broadcaster()
    app.state.settings = settings
    app.state.broadcaster = broadcaster
    app.state.service = GalleryService(
        settings=settings,
        records=RecordStore(settings.data_dir),
        media=MediaStore(settings.uploads_dir),
        proofs=MediaStore(settings.payments_dir),
        broadcaster=broadcaster,
    )

    # Uploaded files are served by generated name
    app.mount("/uploads", StaticFiles(directory=settings.uploads_dir, check_dir=False), name="uploads")
    app.mount("/payment-proofs", StaticFiles(directory=settings.payments_dir, check_dir=False), name="payment-proofs")

    @app.on_event("startup")
    def bootstrap():
        # StaticFiles refuses to serve from a directory that does not exist
        settings.uploads_dir.mkdir(parents=True, exist_ok=True)
        settings.payments_dir.mkdir(parents=True, exist_ok=True)
        app.state.service.ensure_admin()

    @app.exception_handler(PlatformError)
    async def platform_error_handler(request: Request, exc: PlatformError):
        if isinstance(exc, StorageError):
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "Invalid request body"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    # Auth Routes
    @app.post("/api/login")
    def login(payload: LoginRequest, service: GalleryService = Depends(get_service)):
        return service.login(payload.username, payload.password)

    @app.post("/api/register")
    def register(payload: RegisterRequest, service: GalleryService = Depends(get_service)):
        user = service.register(payload.username, payload.password, payload.firstname, payload.phone)
        return {"success": True, "username": user.username, "firstname": user.firstname}

    @app.get("/api/me")
    def me(token: str = Depends(oauth2_scheme), service: GalleryService = Depends(get_service)):
        user = service.current_user(token)
        return {
            "username": user.username,
            "firstname": user.firstname,
            "phone": user.phone,
            "isAdmin": user.role == "admin",
        }

    # Content
    @app.get("/api/content")
    def list_content(service: GalleryService = Depends(get_service)):
        return {"items": service.list_content()}

    @app.get("/api/content/{item_id}")
    def get_content(item_id: str, service: GalleryService = Depends(get_service)):
        return service.get_content(item_id)

    @app.post("/api/content")
    def create_content(
        title: str = Form(""),
        content_type: str = Form("", alias="type"),
        description: str = Form(""),
        project_title: str = Form("", alias="projectTitle"),
        media: Optional[UploadFile] = File(None),
        service: GalleryService = Depends(get_service),
    ):
        item = service.create_content(
            title,
            project_title,
            content_type,
            description,
            media.file if media else None,
            media.filename if media else None,
        )
        return {"success": True, "item": item}

    @app.delete("/api/content/{item_id}")
    def delete_content(item_id: str, service: GalleryService = Depends(get_service)):
        service.delete_content(item_id)
        return {"success": True}

    # Comments
    @app.get("/api/get-comments/{item_id}")
    def get_comments(item_id: str, service: GalleryService = Depends(get_service)):
        return service.get_comments(item_id)

    @app.post("/api/content/{item_id}/comments")
    def add_comment(item_id: str, payload: CommentRequest, service: GalleryService = Depends(get_service)):
        comment = service.add_comment(item_id, payload.username, payload.text)
        return {"success": True, "comment": comment}

    # Likes
    @app.post("/api/content/{item_id}/likes")
    def toggle_like(item_id: str, payload: LikeRequest, service: GalleryService = Depends(get_service)):
        likes, liked = service.toggle_like(item_id, payload.username)
        return {"success": True, "likes": likes, "liked": liked}

    # Payments
    @app.post("/api/submit-payment")
    def submit_payment(
        username: str = Form(""),
        proof: Optional[UploadFile] = File(None, alias="paymentProof"),
        service: GalleryService = Depends(get_service),
    ):
        payment = service.submit_payment(
            username,
            proof.file if proof else None,
            proof.filename if proof else None,
        )
        return {"success": True, "payment": payment}

    @app.get("/api/check-payment")
    def check_payment(username: str = "", service: GalleryService = Depends(get_service)):
        return service.check_payment_status(username)

    # Admin Routes
    @app.get("/api/admin/payments")
    def admin_list_payments(service: GalleryService = Depends(get_service)):
        return {"payments": service.list_payments_for_admin()}

    @app.post("/api/admin/payments/{payment_id}/approve")
    def approve_payment(payment_id: str, service: GalleryService = Depends(get_service)):
        service.approve_payment(payment_id)
        return {"success": True}

    @app.post("/api/admin/payments/{payment_id}/reject")
    def reject_payment(payment_id: str, service: GalleryService = Depends(get_service)):
        service.reject_payment(payment_id)
        return {"success": True}

    @app.get("/api/analytics")
    def analytics(service: GalleryService = Depends(get_service)):
        return service.analytics()

    # Push channel
    @app.websocket("/ws")
    async def events(websocket: WebSocket):
        broadcaster: Broadcaster = websocket.app.state.broadcaster
        await broadcaster.connect(websocket)
        try:
            while True:
                # client frames of any kind are ignored; only the disconnect matters
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        finally:
            broadcaster.disconnect(websocket)

    # Utility endpoints
    @app.get("/")
    def root():
        return {"message": "Gallery Share API running"}

    @app.get("/test")
    def test_storage(service: GalleryService = Depends(get_service)):
        response = {"backend": "ok", "storage": "ok", "collections": {}, "connections": service.broadcaster.connection_count}
        try:
            response["collections"] = service.records.counts()
        except StorageError as e:
            response["storage"] = f"error: {e.message}"
        return response


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
