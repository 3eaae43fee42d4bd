from collections.abc import Iterator
from typing import BinaryIO

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse

from pastebin.features.auth.deps import bearer_token, require_user
from pastebin.features.pastes.schemas import PasteListOut, PasteOut
from pastebin.features.pastes.service import PastesService
from pastebin.infra.repo_pastes import PasteRepo
from pastebin.infra.repo_users import User
from pastebin.infra.sniff import TEXT_PLAIN
from pastebin.infra.storage import CHUNK_SIZE, BlobStore

router = APIRouter(tags=["pastes"])


def _service(request: Request) -> PastesService:
    cfg = request.app.state.cfg
    return PastesService(
        pastes=PasteRepo(request.app.state.db),
        blobs=BlobStore(cfg.uploads_dir),
        base_url=cfg.base_url,
    )


def _iter_blob(stream: BinaryIO) -> Iterator[bytes]:
    with stream:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


def _blob_response(request: Request, digest: str, name: str) -> StreamingResponse:
    blob = _service(request).read_blob(digest=digest, name=name)
    media_type = blob.mime_type
    if media_type == TEXT_PLAIN:
        media_type = "text/plain; charset=utf-8"
    return StreamingResponse(
        _iter_blob(blob.stream),
        media_type=media_type,
        headers={"Content-Length": str(blob.size)},
    )


@router.get("/user/pastes", response_model=PasteListOut)
def list_my_pastes(request: Request, user: User = Depends(require_user)) -> PasteListOut:
    return _service(request).list_pastes(owner=user.username)


@router.get("/blob/{digest}")
def get_blob(request: Request, digest: str) -> StreamingResponse:
    return _blob_response(request, digest, "")


@router.get("/blob/{digest}/{name}")
def get_named_blob(request: Request, digest: str, name: str) -> StreamingResponse:
    return _blob_response(request, digest, name)


@router.get("/{paste_id}", response_model=PasteOut)
def get_paste(request: Request, paste_id: str) -> PasteOut:
    return _service(request).get_paste(paste_id=paste_id)


@router.delete("/{paste_id}", status_code=204)
def delete_paste(request: Request, paste_id: str) -> Response:
    _service(request).delete_paste(
        paste_id=paste_id,
        token=bearer_token(request.headers.get("Authorization")),
        tokens=request.app.state.tokens,
    )
    return Response(status_code=204)
