"""
Contract file storage on Cloudflare R2 (S3-compatible)

Layout: company/<company_id>/contracts/<contract_id>/{final.pdf, signature-<party>.png}
"""

import logging

import boto3

from ..config import R2_ACCESS_KEY_ID, R2_ACCOUNT_ID, R2_BUCKET_NAME, R2_SECRET_ACCESS_KEY

logger = logging.getLogger(__name__)

# Presigned URL expiration time (1 hour)
PRESIGNED_URL_EXPIRATION = 3600


def get_r2_client():
    """Get R2 client"""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com",
        aws_access_key_id=R2_ACCESS_KEY_ID,
        aws_secret_access_key=R2_SECRET_ACCESS_KEY,
        region_name="auto",
    )


def contract_prefix(company_id: str, contract_id: str) -> str:
    return f"company/{company_id}/contracts/{contract_id}"


def upload_contract_pdf(pdf_bytes: bytes, company_id: str, contract_id: str) -> str:
    """Upload the final contract PDF to R2 and return the key"""
    key = f"{contract_prefix(company_id, contract_id)}/final.pdf"

    r2 = get_r2_client()
    r2.put_object(
        Bucket=R2_BUCKET_NAME,
        Key=key,
        Body=pdf_bytes,
        ContentType="application/pdf",
    )

    logger.info(f"✅ Uploaded contract PDF to R2: {key}")
    return key


def upload_signature_image(
    image_bytes: bytes,
    company_id: str,
    contract_id: str,
    party: str,
    content_type: str = "image/png",
) -> str:
    """Upload a rendered signature image to R2 and return the key"""
    extension = content_type.split("/")[-1].replace("jpeg", "jpg")
    key = f"{contract_prefix(company_id, contract_id)}/signature-{party}.{extension}"

    r2 = get_r2_client()
    r2.put_object(
        Bucket=R2_BUCKET_NAME,
        Key=key,
        Body=image_bytes,
        ContentType=content_type,
    )

    logger.info(f"✅ Uploaded {party} signature to R2: {key}")
    return key


def download_object(key: str) -> bytes:
    r2 = get_r2_client()
    response = r2.get_object(Bucket=R2_BUCKET_NAME, Key=key)
    return response["Body"].read()


def generate_presigned_url(key: str, expiration: int = PRESIGNED_URL_EXPIRATION) -> str:
    """Generate a presigned URL for accessing a private object in R2."""
    r2 = get_r2_client()
    params = {"Bucket": R2_BUCKET_NAME, "Key": key}
    if key.lower().endswith(".pdf"):
        params["ResponseContentType"] = "application/pdf"
    return r2.generate_presigned_url("get_object", Params=params, ExpiresIn=expiration)
