import logging
from dataclasses import dataclass

from botocore.exceptions import BotoCoreError, ClientError

from links.errors import StorageUnavailable
from links.manager import TokenManager
from links.records import token_hint
from storage.s3_client import S3Client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievalResult:
    url: str
    storage_reference: str
    remaining_uses: int
    expires_in: int


class RetrievalCoordinator:
    """Turns a successful redemption into a short-lived presigned S3 URL."""

    def __init__(self, manager: TokenManager, s3_client: S3Client, url_expires: int):
        self.manager = manager
        self.s3_client = s3_client
        self.url_expires = url_expires

    def retrieve(self, token: str) -> RetrievalResult:
        redemption = self.manager.redeem(token)
        try:
            url = self.s3_client.generate_download_url(
                redemption.storage_reference, expires_in=self.url_expires
            )
        except (BotoCoreError, ClientError) as e:
            # The use is already spent at this point
            logger.error(
                "Presigning %s for link %s failed after redemption: %s",
                redemption.storage_reference, token_hint(redemption.token), e,
            )
            raise StorageUnavailable(f"could not sign URL for {redemption.storage_reference}") from e

        return RetrievalResult(
            url=url,
            storage_reference=redemption.storage_reference,
            remaining_uses=redemption.remaining_uses,
            expires_in=self.url_expires,
        )
