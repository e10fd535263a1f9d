"""
Email Service using Resend
Provides contract lifecycle emails using MJML templates for responsive design
"""

import logging
from typing import Optional, Union

import resend
from mjml import mjml_to_html

from .config import APP_BASE_URL, EMAIL_FROM_ADDRESS, RESEND_API_KEY
from .email_templates import (
    client_signature_confirmation_template,
    contract_completed_template,
    contract_link_template,
    contract_signed_notification_template,
    payment_link_template,
)

logger = logging.getLogger(__name__)

resend.api_key = RESEND_API_KEY


def compile_mjml_to_html(mjml_content: str) -> str:
    """Compile MJML template to production-ready HTML"""
    try:
        result = mjml_to_html(mjml_content)
        # mjml_to_html returns a dict with 'html' and 'errors' keys
        if isinstance(result, dict):
            if result.get("errors"):
                logger.warning(f"MJML compilation warnings: {result['errors']}")
            return result.get("html", "")
        return str(result)
    except Exception as e:
        logger.error(f"MJML compilation error: {e}")
        raise RuntimeError(f"Failed to compile MJML template: {str(e)}") from e


async def send_email(
    to: Union[str, list[str]],
    subject: str,
    mjml_content: str,
    from_address: Optional[str] = None,
) -> dict:
    """
    Send an email through Resend

    Args:
        to: Recipient email(s)
        subject: Email subject line
        mjml_content: MJML template content (will be compiled to HTML)
        from_address: Optional custom from address

    Returns:
        Send response dict
    """
    if not RESEND_API_KEY:
        logger.error("❌ No email service configured - RESEND_API_KEY missing")
        raise RuntimeError("Email service not configured")

    html_content = compile_mjml_to_html(mjml_content)
    recipients = [to] if isinstance(to, str) else to

    try:
        logger.info(f"📧 Sending email via Resend to: {recipients}")
        response = resend.Emails.send(
            {
                "from": from_address or EMAIL_FROM_ADDRESS,
                "to": recipients,
                "subject": subject,
                "html": html_content,
            }
        )
        logger.info(f"✅ Email sent successfully via Resend: {response}")
        return response
    except Exception as e:
        logger.error(f"❌ Email send error to {recipients}: {e}")
        raise RuntimeError(f"Failed to send email: {str(e)}") from e


# ============================================
# Contract lifecycle emails
# ============================================


async def send_contract_link_email(
    to: str,
    client_name: str,
    contractor_name: str,
    company_name: str,
    contract_title: str,
    signing_url: str,
    deposit_amount: float = 0,
    total_amount: float = 0,
    is_reminder: bool = False,
) -> dict:
    """Send the signing link to the client"""
    mjml_content = contract_link_template(
        client_name=client_name,
        contractor_name=contractor_name,
        company_name=company_name,
        contract_title=contract_title,
        signing_url=signing_url,
        deposit_amount=deposit_amount,
        total_amount=total_amount,
        is_reminder=is_reminder,
    )
    prefix = "Reminder: " if is_reminder else ""
    return await send_email(
        to=to,
        subject=f"{prefix}Please sign: {contract_title}",
        mjml_content=mjml_content,
    )


async def send_payment_link_email(
    to: str,
    client_name: str,
    company_name: str,
    contract_title: str,
    deposit_amount: float,
    payment_url: str,
) -> dict:
    """Ask the client to pay the deposit after signing"""
    mjml_content = payment_link_template(
        client_name=client_name,
        company_name=company_name,
        contract_title=contract_title,
        deposit_amount=deposit_amount,
        payment_url=payment_url,
    )
    return await send_email(
        to=to,
        subject=f"Deposit required: {contract_title}",
        mjml_content=mjml_content,
    )


async def send_client_signature_confirmation(
    to: str,
    client_name: str,
    company_name: str,
    contract_title: str,
    awaiting_contractor: bool = False,
) -> dict:
    """Notify client after they sign the contract"""
    mjml_content = client_signature_confirmation_template(
        client_name=client_name,
        company_name=company_name,
        contract_title=contract_title,
        awaiting_contractor=awaiting_contractor,
    )
    return await send_email(
        to=to,
        subject=f"Contract Signed - {contract_title}",
        mjml_content=mjml_content,
    )


async def send_contract_signed_notification(
    to: str,
    contractor_name: str,
    client_name: str,
    contract_title: str,
    contract_id: str,
) -> dict:
    """Notify the contractor when a client signs their contract"""
    mjml_content = contract_signed_notification_template(
        contractor_name=contractor_name,
        client_name=client_name,
        contract_title=contract_title,
        dashboard_url=f"{APP_BASE_URL}/contracts/{contract_id}",
    )
    return await send_email(
        to=to,
        subject=f"Contract Signed by {client_name}",
        mjml_content=mjml_content,
    )


async def send_contract_completed_email(
    to: str,
    recipient_name: str,
    contract_title: str,
    company_name: str,
    client_name: str,
    deposit_amount: float,
    total_amount: float,
    pdf_url: Optional[str] = None,
    is_client: bool = True,
) -> dict:
    """Send the completion notice with the final PDF link"""
    mjml_content = contract_completed_template(
        recipient_name=recipient_name,
        contract_title=contract_title,
        company_name=company_name,
        client_name=client_name,
        deposit_amount=deposit_amount,
        total_amount=total_amount,
        pdf_url=pdf_url,
        is_client=is_client,
    )
    subject = (
        f"Your contract is complete: {contract_title}"
        if is_client
        else f"Contract completed by {client_name}: {contract_title}"
    )
    return await send_email(to=to, subject=subject, mjml_content=mjml_content)
