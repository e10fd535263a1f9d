"""
Contract PDF Generator
Renders the final, signed contract with signature and payment details
"""

import hashlib
import io
import logging
import re
from datetime import datetime
from typing import Optional

import bleach
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import (
    Image,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from ..models import Client, Company, Contract, Contractor, Signature

logger = logging.getLogger(__name__)

_BLOCK_BREAK = re.compile(r"(?i)</p>|<br\s*/?>|</h[1-6]>|</li>|</tr>")


def content_to_paragraphs(content: Optional[str]) -> list[str]:
    """Split sanitized contract HTML into plain text paragraphs for reportlab"""
    if not content:
        return []
    text = _BLOCK_BREAK.sub("\n", content)
    text = bleach.clean(text, tags=[], strip=True)
    return [line.strip() for line in text.split("\n") if line.strip()]


class ContractPDFGenerator:
    """Generate the final contract PDF"""

    def __init__(
        self,
        contract: Contract,
        client: Optional[Client],
        contractor: Optional[Contractor],
        company: Optional[Company],
        signatures: list[Signature],
        payment_info: Optional[dict] = None,
        signature_images: Optional[dict[str, bytes]] = None,
    ):
        self.contract = contract
        self.client = client
        self.contractor = contractor
        self.company = company
        self.signatures = signatures
        self.payment_info = payment_info or {}
        self.signature_images = signature_images or {}

        # PDF settings
        self.page_width, self.page_height = letter
        self.margin = 0.75 * inch
        self.content_width = self.page_width - (2 * self.margin)

        branding = (contract.field_values or {}).get("_branding") or {}
        self.brand_color = colors.HexColor(branding.get("primaryColor") or "#4f46e5")
        self.dark_gray = colors.HexColor("#1e293b")
        self.light_gray = colors.HexColor("#f1f5f9")

    def generate(self) -> bytes:
        """Generate PDF and return bytes"""
        logger.info(f"📄 Generating contract PDF for contract {self.contract.id}")

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=self.contract.title,
        )

        story = []
        styles = getSampleStyleSheet()

        title_style = ParagraphStyle(
            "ContractTitle",
            parent=styles["Heading1"],
            fontSize=22,
            textColor=self.brand_color,
            spaceAfter=12,
            alignment=1,  # Center
        )
        heading_style = ParagraphStyle(
            "ContractHeading",
            parent=styles["Heading2"],
            fontSize=14,
            textColor=self.dark_gray,
            spaceAfter=8,
            spaceBefore=18,
        )
        body_style = ParagraphStyle(
            "ContractBody",
            parent=styles["Normal"],
            fontSize=10,
            textColor=self.dark_gray,
            spaceAfter=6,
        )

        # Header Section
        story.append(Paragraph(bleach.clean(self.contract.title, tags=[], strip=True), title_style))
        story.append(Spacer(1, 0.2 * inch))

        company_name = self.company.name if self.company else ""
        contractor_name = (self.contractor.name or self.contractor.email) if self.contractor else ""
        info_data = [
            ["Provider:", f"{company_name} ({contractor_name})" if company_name else contractor_name],
            ["Client:", self.client.name if self.client else "N/A"],
            ["Client Email:", self.client.email if self.client else "N/A"],
            ["Contract ID:", self.contract.id],
            ["Total:", f"${self.contract.total_amount or 0:,.2f}"],
            ["Deposit:", f"${self.contract.deposit_amount or 0:,.2f}"],
        ]
        info_table = Table(info_data, colWidths=[1.5 * inch, 4.5 * inch])
        info_table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (0, -1), "Helvetica-Bold", 10),
                    ("FONT", (1, 0), (1, -1), "Helvetica", 10),
                    ("TEXTCOLOR", (0, 0), (-1, -1), self.dark_gray),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        story.append(info_table)

        # Terms
        story.append(Paragraph("TERMS", heading_style))
        for paragraph in content_to_paragraphs(self.contract.content):
            story.append(Paragraph(paragraph, body_style))

        # Signatures
        story.append(Paragraph("SIGNATURES", heading_style))
        for signature in self.signatures:
            story.extend(self._signature_block(signature, body_style))

        # Payment
        if self.contract.paid_at:
            story.append(Paragraph("PAYMENT", heading_style))
            paid_line = f"Paid: {self.contract.paid_at.strftime('%B %d, %Y %H:%M UTC')}"
            if self.payment_info.get("receipt_id"):
                paid_line += f" (Receipt {self.payment_info['receipt_id']})"
            story.append(Paragraph(paid_line, body_style))

        # Footer Section
        story.append(Spacer(1, 0.4 * inch))
        story.append(
            Paragraph(
                f"<i>Generated {datetime.utcnow().strftime('%B %d, %Y')}. "
                "Each signature is bound to a SHA-256 hash of the contract terms at signing time.</i>",
                ParagraphStyle(
                    "Footer",
                    parent=body_style,
                    fontSize=8,
                    textColor=colors.grey,
                    alignment=1,
                ),
            )
        )

        doc.build(story, onFirstPage=self._add_page_number, onLaterPages=self._add_page_number)

        pdf_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"✅ Generated contract PDF ({len(pdf_bytes)} bytes)")
        return pdf_bytes

    def _signature_block(self, signature: Signature, body_style: ParagraphStyle) -> list:
        party = signature.party.value if hasattr(signature.party, "value") else signature.party
        flowables = []

        image_bytes = self.signature_images.get(party)
        if image_bytes:
            try:
                flowables.append(Image(io.BytesIO(image_bytes), width=2.5 * inch, height=0.8 * inch))
            except Exception as e:
                logger.warning(f"⚠️ Could not embed {party} signature image: {e}")

        rows = [
            ["Party:", party.capitalize()],
            ["Name:", signature.full_name],
            ["Signed:", signature.signed_at.strftime("%B %d, %Y %H:%M UTC")],
            ["IP Address:", signature.ip_address],
            ["Content Hash:", signature.contract_hash],
        ]
        table = Table(rows, colWidths=[1.5 * inch, 4.5 * inch])
        table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (0, -1), "Helvetica-Bold", 9),
                    ("FONT", (1, 0), (1, -1), "Helvetica", 9),
                    ("BACKGROUND", (0, 0), (-1, -1), self.light_gray),
                    ("TEXTCOLOR", (0, 0), (-1, -1), self.dark_gray),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
                ]
            )
        )
        flowables.append(table)
        flowables.append(Spacer(1, 0.2 * inch))
        return flowables

    def _add_page_number(self, canvas_obj, doc):
        """Add page numbers to PDF"""
        page_num = canvas_obj.getPageNumber()
        canvas_obj.setFont("Helvetica", 9)
        canvas_obj.setFillColor(colors.grey)
        canvas_obj.drawRightString(
            self.page_width - self.margin, self.margin / 2, f"Page {page_num}"
        )

    @staticmethod
    def calculate_hash(pdf_bytes: bytes) -> str:
        """Calculate SHA-256 hash of PDF"""
        return hashlib.sha256(pdf_bytes).hexdigest()
