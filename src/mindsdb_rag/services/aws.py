"""
Shared helpers for boto3-backed services.
"""

from botocore.exceptions import ClientError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from mindsdb_rag.config import Settings

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailableException",
    }
)


def get_boto_kwargs(settings: Settings) -> dict:
    """Get boto3 client kwargs, only including credentials if explicitly set."""
    # In Lambda, use IAM role credentials automatically
    kwargs = {"region_name": settings.aws.region}
    if settings.aws.access_key_id and settings.aws.secret_access_key:
        kwargs["aws_access_key_id"] = settings.aws.access_key_id
        kwargs["aws_secret_access_key"] = settings.aws.secret_access_key
    return kwargs


def is_transient_error(error: BaseException) -> bool:
    """Whether a boto error is worth retrying."""
    if not isinstance(error, ClientError):
        return False
    return error.response.get("Error", {}).get("Code") in TRANSIENT_ERROR_CODES


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "Unknown")


transient_retry = retry(
    retry=retry_if_exception(is_transient_error),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)
