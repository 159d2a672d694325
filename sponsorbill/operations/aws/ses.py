"""AWS SES adapter for sending invoice emails."""

from dataclasses import dataclass
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sponsorbill.config import env
from sponsorbill.logger import logger
from sponsorbill.utils.formatting import area_headline, format_money


@dataclass(frozen=True)
class SendResult:
  accepted: bool
  message_id: Optional[str] = None
  reason: Optional[str] = None


class SESEmailService:
  """Service for sending invoice emails via Amazon SES."""

  def __init__(
    self,
    from_address: Optional[str] = None,
    region_name: Optional[str] = None,
    configuration_set: Optional[str] = None,
  ):
    """Initialize SES client."""
    aws_config = env.get_aws_config()
    if region_name:
      aws_config["region_name"] = region_name
    self.ses_client = boto3.client("ses", **aws_config)
    self.from_address = from_address or env.INVOICE_FROM_EMAIL
    self.configuration_set = configuration_set or env.SES_CONFIGURATION_SET or None

    if not self.from_address:
      logger.warning("INVOICE_FROM_EMAIL not configured - invoices will not be sent")

  def _get_email_template(
    self, email_type: str, template_data: dict[str, Any]
  ) -> dict[str, str]:
    """Get email subject and body templates based on email type."""
    supplier_name = template_data.get("supplier_name", "Kleanly")
    customer_name = template_data.get("customer_name") or "there"
    invoice_number = template_data.get("invoice_number", "")
    headline = template_data.get("headline", "")
    total = template_data.get("total", "")
    download_url = template_data.get("download_url")

    download_html = ""
    download_text = ""
    if download_url:
      download_html = (
        '<p><a href="{url}" class="link">Download a copy of this invoice</a></p>'
      ).format(url=escape(download_url, quote=True))
      download_text = f"\nDownload a copy of this invoice:\n{download_url}\n"

    templates = {
      "invoice": {
        "subject": f"Invoice {invoice_number}",
        "html": f"""
<!DOCTYPE html>
<html>
<head>
    <style>
        body {{ font-family: Arial, sans-serif; line-height: 1.5; color: #333; }}
        .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
        .content {{ padding: 20px; }}
        .link {{ word-break: break-all; color: #007bff; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="content">
            <p>Hi {escape(customer_name)},</p>
            <p>Please find your invoice <b>{escape(invoice_number)}</b> attached.</p>
            <p><b>{escape(headline)}</b></p>
            <p>Total: <b>{escape(total)}</b></p>
            {download_html}
            <p>Thanks,<br/>{escape(supplier_name)}</p>
        </div>
    </div>
</body>
</html>""",
        "text": f"""Hi {customer_name},

Please find your invoice {invoice_number} attached.

{headline}
Total: {total}
{download_text}
Thanks,
{supplier_name}""",
      },
    }

    return templates.get(
      email_type,
      {
        "subject": f"{supplier_name} Notification",
        "html": f"<p>{escape(str(template_data))}</p>",
        "text": str(template_data),
      },
    )

  def _build_message(
    self,
    recipient: str,
    subject: str,
    body_html: str,
    body_text: Optional[str],
    attachment: Optional[bytes],
    attachment_name: Optional[str],
  ) -> MIMEMultipart:
    message = MIMEMultipart("mixed")
    message["Subject"] = subject
    message["From"] = self.from_address
    message["To"] = recipient

    body = MIMEMultipart("alternative")
    if body_text:
      body.attach(MIMEText(body_text, "plain", "utf-8"))
    body.attach(MIMEText(body_html, "html", "utf-8"))
    message.attach(body)

    if attachment:
      part = MIMEApplication(attachment, _subtype="pdf")
      part.add_header(
        "Content-Disposition",
        "attachment",
        filename=attachment_name or "invoice.pdf",
      )
      message.attach(part)

    return message

  def send(
    self,
    recipient: str,
    subject: str,
    body_html: str,
    attachment: Optional[bytes] = None,
    body_text: Optional[str] = None,
    attachment_name: Optional[str] = None,
    email_type: str = "invoice",
  ) -> SendResult:
    """
    Send an email with an optional PDF attachment via SES raw email.

    Args:
        recipient: Recipient email address
        subject: Subject line
        body_html: HTML body
        attachment: PDF bytes to attach
        body_text: Plain-text alternative
        attachment_name: File name shown for the attachment
        email_type: Tag value used for SES event tracking

    Returns:
        SendResult; ``accepted`` is False with a reason when SES refused it
    """
    if not self.from_address:
      logger.warning(f"Cannot send {email_type} email - INVOICE_FROM_EMAIL not configured")
      return SendResult(accepted=False, reason="sender not configured")

    message = self._build_message(
      recipient, subject, body_html, body_text, attachment, attachment_name
    )

    send_args = {
      "Source": self.from_address,
      "Destinations": [recipient],
      "RawMessage": {"Data": message.as_string()},
      "Tags": [
        {"Name": "EmailType", "Value": email_type},
        {"Name": "Environment", "Value": env.ENVIRONMENT},
      ],
    }
    if self.configuration_set:
      send_args["ConfigurationSetName"] = self.configuration_set

    try:
      response = self.ses_client.send_raw_email(**send_args)

    except ClientError as e:
      error_code = e.response["Error"]["Code"]
      error_message = e.response["Error"]["Message"]

      if error_code == "MessageRejected":
        logger.error(f"SES rejected email to {recipient}: {error_message}")
      elif error_code == "MailFromDomainNotVerified":
        logger.error(f"SES sender domain not verified: {self.from_address}")
      elif error_code == "ConfigurationSetDoesNotExist":
        logger.error("SES configuration set does not exist")
      else:
        logger.error(
          f"AWS SES error sending {email_type} email to {recipient}: "
          f"{error_code} - {error_message}"
        )
      return SendResult(accepted=False, reason=error_message or error_code)

    except BotoCoreError as e:
      logger.error(f"Unexpected error sending {email_type} email to {recipient}: {e!s}")
      return SendResult(accepted=False, reason=str(e) or "unknown")

    message_id = response.get("MessageId")
    logger.info(f"Sent {email_type} email to {recipient}. MessageId: {message_id}")
    return SendResult(accepted=True, message_id=message_id)

  def send_invoice_email(
    self,
    recipient: str,
    customer_name: str,
    invoice_number: str,
    industry_name: str,
    area_name: str,
    total_cents: int,
    currency: str,
    supplier_name: str,
    pdf: bytes,
    download_url: Optional[str] = None,
  ) -> SendResult:
    """
    Send an invoice with the rendered PDF attached.

    Args:
        recipient: Customer contact email
        customer_name: Name used in the greeting
        invoice_number: Human-readable invoice number
        industry_name: Industry shown in the headline
        area_name: Area shown in the headline
        total_cents: Invoice total in minor units
        currency: ISO currency code
        supplier_name: Name used in the sign-off
        pdf: Rendered invoice document
        download_url: Optional signed link to the stored copy

    Returns:
        SendResult from the underlying send
    """
    template_data = {
      "customer_name": customer_name,
      "invoice_number": invoice_number,
      "headline": area_headline(industry_name, area_name, limit=120),
      "total": format_money(total_cents, currency),
      "supplier_name": supplier_name,
      "download_url": download_url,
    }
    template = self._get_email_template("invoice", template_data)

    return self.send(
      recipient,
      template["subject"],
      template["html"],
      attachment=pdf,
      body_text=template["text"],
      attachment_name=f"{invoice_number}.pdf",
    )
