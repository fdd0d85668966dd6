import logging

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

logger = logging.getLogger(__name__)


class S3Client:
    def __init__(self, config: dict):
        self.bucket = config["bucket_name"]
        self.region = config["aws_region"]

        kwargs = {"region_name": self.region}
        if config.get("s3_endpoint"):
            kwargs["endpoint_url"] = config["s3_endpoint"]
        # Empty credentials fall through to boto3's default provider chain
        if config.get("aws_access_key") and config.get("aws_secret_key"):
            kwargs["aws_access_key_id"] = config["aws_access_key"]
            kwargs["aws_secret_access_key"] = config["aws_secret_key"]

        addressing = "path" if config.get("s3_force_path_style") else "virtual"
        kwargs["config"] = Config(signature_version="s3v4", s3={"addressing_style": addressing})

        self.client = boto3.client("s3", **kwargs)

    def verify_connection(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket)
            return True
        except ClientError as e:
            # A 403 still means the endpoint and credentials are reachable
            if e.response["Error"]["Code"] in ("AccessDenied", "403"):
                return True
            logger.warning("S3 bucket %s not reachable: %s", self.bucket, e)
            return False
        except NoCredentialsError:
            logger.warning("No AWS credentials available")
            return False
        except BotoCoreError as e:
            logger.warning("S3 endpoint not reachable: %s", e)
            return False

    def generate_download_url(self, key: str, expires_in: int) -> str:
        """Return a presigned GET URL for ``key`` valid for ``expires_in`` seconds.

        Signing happens locally; a missing object only shows up when the URL is fetched.
        """
        return self.client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires_in,
        )
