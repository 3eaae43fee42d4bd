from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from pastebin.features.auth.deps import require_user
from pastebin.features.upload.service import UploadService
from pastebin.infra.repo_pastes import PasteRepo
from pastebin.infra.repo_users import User
from pastebin.infra.sniff import ContentTypeFilter
from pastebin.infra.storage import BlobStore

router = APIRouter(tags=["upload"])


@router.post("/", status_code=201, response_class=PlainTextResponse)
async def upload_paste(request: Request, user: User = Depends(require_user)) -> str:
    cfg = request.app.state.cfg
    service = UploadService(
        blobs=BlobStore(cfg.uploads_dir),
        pastes=PasteRepo(request.app.state.db),
        allocator=request.app.state.ids,
        content_filter=ContentTypeFilter(cfg.filter_types, allow=cfg.filter_allow),
        max_body_size=cfg.max_body_size,
    )
    paste = await service.ingest(
        owner=user.username,
        content_type=request.headers.get("content-type", ""),
        chunks=request.stream(),
    )
    return f"{cfg.base_url}{paste.id}\n"
