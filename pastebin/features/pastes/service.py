import logging
from urllib.parse import quote

from pastebin.features.auth.tokens import TokenRegistry
from pastebin.features.pastes.schemas import PasteFileOut, PasteListOut, PasteOut
from pastebin.infra.repo_pastes import Paste, PasteRepo
from pastebin.infra.storage import BlobHandle, BlobStore

logger = logging.getLogger(__name__)


def blob_url(base_url: str, digest: str, name: str) -> str:
    url = f"{base_url}blob/{digest}"
    return f"{url}/{quote(name)}" if name else url


class PastesService:
    def __init__(self, *, pastes: PasteRepo, blobs: BlobStore, base_url: str) -> None:
        self._pastes = pastes
        self._blobs = blobs
        self._base_url = base_url

    def to_out(self, paste: Paste) -> PasteOut:
        return PasteOut(
            id=paste.id,
            owner=paste.owner,
            created_at=paste.created_at,
            files=[
                PasteFileOut(name=f.name, hash=f.hash, url=blob_url(self._base_url, f.hash, f.name))
                for f in paste.files
            ],
        )

    def get_paste(self, *, paste_id: str) -> PasteOut:
        return self.to_out(self._pastes.get(paste_id))

    def list_pastes(self, *, owner: str) -> PasteListOut:
        return PasteListOut(owner=owner, ids=self._pastes.list_for_owner(owner))

    def read_blob(self, *, digest: str, name: str = "") -> BlobHandle:
        return self._blobs.read(digest, name)

    def delete_paste(self, *, paste_id: str, token: str | None, tokens: TokenRegistry) -> None:
        # Token problems are reported before the paste is even looked up.
        tokens.authorize(token)
        paste = self._pastes.get(paste_id)
        user = tokens.authorize_owner(token, paste)
        self._pastes.delete(paste_id)
        logger.info("%s deleted paste %s", user.username, paste_id)
