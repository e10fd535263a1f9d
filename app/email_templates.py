"""
MJML Email Templates
Contract lifecycle emails using MJML for responsive, cross-client compatibility
"""

from typing import Optional

from .utils.sanitization import sanitize_string

# App theme colors - Indigo/Slate color scheme
THEME = {
    "primary": "#4f46e5",
    "primary_dark": "#4338ca",
    "primary_light": "#e0e7ff",
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#10b981",
    "warning": "#f59e0b",
    "danger": "#ef4444",
}


def _money(amount: Optional[float]) -> str:
    return f"${(amount or 0):,.2f}"


def get_base_template(
    title: str,
    preview_text: str,
    content_sections: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
    is_user_email: bool = False,
) -> str:
    """Base MJML template wrapper for all emails"""

    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <mj-section padding="20px 0">
          <mj-column>
            <mj-button
              href="{cta_url}"
              background-color="{THEME['primary']}"
              color="#ffffff"
              font-weight="600"
              border-radius="8px"
              padding="18px 40px"
              font-size="16px">
              {cta_label}
            </mj-button>
          </mj-column>
        </mj-section>
        """

    footer_notice = ""
    if is_user_email:
        footer_notice = """
        <mj-text align="center" font-size="12px" color="#94a3b8" padding="12px 0 0 0">
          You're receiving this because you manage contracts with this account.
        </mj-text>
        """

    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <!-- Main Content -->
        <mj-section background-color="#ffffff" padding="40px 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        {cta_section}

        <!-- Footer -->
        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              Sent securely on behalf of your service provider.
            </mj-text>
            {footer_notice}
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


def contract_link_template(
    client_name: str,
    contractor_name: str,
    company_name: str,
    contract_title: str,
    signing_url: str,
    deposit_amount: float = 0,
    total_amount: float = 0,
    is_reminder: bool = False,
) -> str:
    """Signing link sent to the client"""
    client_name = sanitize_string(client_name)
    company_name = sanitize_string(company_name)
    contract_title = sanitize_string(contract_title)
    contractor_name = sanitize_string(contractor_name)

    deposit_line = ""
    if deposit_amount and deposit_amount > 0:
        deposit_line = f"<br/>Deposit due at signing: {_money(deposit_amount)}"

    intro = "This is a reminder that a contract is" if is_reminder else "A new contract is"

    content = f"""
    <mj-text color="{THEME['text_muted']}" padding="0 0 24px 0">
      {intro} waiting for your signature.
    </mj-text>

    <mj-text>
      Hi {client_name},
    </mj-text>

    <mj-text>
      <strong>{contractor_name}</strong> from {company_name} has sent you a contract to review and sign.
    </mj-text>

    <mj-text>
      Contract: {contract_title}<br/>
      Total: {_money(total_amount)}{deposit_line}
    </mj-text>

    <mj-text color="{THEME['text_muted']}" font-size="14px">
      This link is personal to you and expires in 7 days. Do not forward this email.
    </mj-text>
    """

    return get_base_template(
        title="Contract Ready to Sign" if not is_reminder else "Reminder: Contract Ready to Sign",
        preview_text=f"{company_name} sent you {contract_title}",
        content_sections=content,
        cta_url=signing_url,
        cta_label="Review & Sign Contract",
    )


def payment_link_template(
    client_name: str,
    company_name: str,
    contract_title: str,
    deposit_amount: float,
    payment_url: str,
) -> str:
    """Deposit payment link sent after the client signs"""
    content = f"""
    <mj-text color="{THEME['text_muted']}" padding="0 0 24px 0">
      Your signature has been recorded.
    </mj-text>

    <mj-text>
      Hi {sanitize_string(client_name)},
    </mj-text>

    <mj-text>
      Thank you for signing <strong>{sanitize_string(contract_title)}</strong>.
      A deposit of <strong>{_money(deposit_amount)}</strong> is required to confirm the work with {sanitize_string(company_name)}.
    </mj-text>

    <mj-text color="{THEME['text_muted']}" font-size="14px">
      Your contract will be finalized and a signed copy emailed to you once the deposit is received.
    </mj-text>
    """

    return get_base_template(
        title="Deposit Required",
        preview_text=f"Pay your {_money(deposit_amount)} deposit to finalize your contract",
        content_sections=content,
        cta_url=payment_url,
        cta_label="Pay Deposit",
    )


def client_signature_confirmation_template(
    client_name: str,
    company_name: str,
    contract_title: str,
    awaiting_contractor: bool = False,
) -> str:
    """Client signature confirmation MJML template"""
    status_line = (
        "⏰ Awaiting Provider Signature" if awaiting_contractor else "✅ Signed"
    )

    content = f"""
    <mj-text color="{THEME['text_muted']}" padding="0 0 24px 0">
      Your contract with {sanitize_string(company_name)} has been signed successfully.
    </mj-text>

    <mj-text>
      Thank you for signing your contract, {sanitize_string(client_name)}!
    </mj-text>

    <mj-text>
      Contract: {sanitize_string(contract_title)}<br/>
      Status: {status_line}
    </mj-text>
    """

    return get_base_template(
        title="Thank You for Signing!",
        preview_text=f"Contract Signed - {sanitize_string(contract_title)}",
        content_sections=content,
    )


def contract_signed_notification_template(
    contractor_name: str, client_name: str, contract_title: str, dashboard_url: str
) -> str:
    """Contract signed by client notification MJML template"""
    content = f"""
    <mj-text>
      Hi {sanitize_string(contractor_name)},
    </mj-text>

    <mj-text>
      Great news! <strong>{sanitize_string(client_name)}</strong> has signed their contract.
    </mj-text>

    <mj-text>
      Contract: {sanitize_string(contract_title)}<br/>
      Client: {sanitize_string(client_name)}
    </mj-text>
    """

    return get_base_template(
        title="Client Has Signed!",
        preview_text=f"Contract Signed by {sanitize_string(client_name)}",
        content_sections=content,
        cta_url=dashboard_url,
        cta_label="View Contract",
        is_user_email=True,
    )


def contract_completed_template(
    recipient_name: str,
    contract_title: str,
    company_name: str,
    client_name: str,
    deposit_amount: float,
    total_amount: float,
    pdf_url: Optional[str] = None,
    is_client: bool = True,
) -> str:
    """Completion notice with the final PDF, sent to both parties"""
    if is_client:
        intro = f"Your contract with {sanitize_string(company_name)} is complete."
        body = "A signed copy of your contract is available below. Keep it for your records."
    else:
        intro = f"{sanitize_string(client_name)} has completed their contract."
        body = "Signatures and payment are confirmed and the final PDF has been generated."

    deposit_line = ""
    if deposit_amount and deposit_amount > 0:
        deposit_line = f"<br/>Deposit received: {_money(deposit_amount)}"

    content = f"""
    <mj-text color="{THEME['text_muted']}" padding="0 0 24px 0">
      {intro}
    </mj-text>

    <mj-text>
      Hi {sanitize_string(recipient_name)},
    </mj-text>

    <mj-text>
      Contract: {sanitize_string(contract_title)}<br/>
      Total: {_money(total_amount)}{deposit_line}
    </mj-text>

    <mj-text>
      {body}
    </mj-text>
    """

    return get_base_template(
        title="Contract Completed",
        preview_text=f"{sanitize_string(contract_title)} is complete",
        content_sections=content,
        cta_url=pdf_url,
        cta_label="Download Signed Contract" if pdf_url else None,
        is_user_email=not is_client,
    )
