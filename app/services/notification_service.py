import logging
from dataclasses import dataclass, field
from html import escape
from typing import Optional
from urllib.parse import quote

from app.models.equipment_request import ApprovalStatus, RequestRecord
from app.services.mail_service import MailAttachment, MailResult, MailService
from app.services.pdf_service import PdfService, format_date


logger = logging.getLogger(__name__)

SUBMISSION_PDF_NAME = "equipment-request.pdf"


@dataclass
class DeliveryReport:
    results: list[MailResult] = field(default_factory=list)

    @property
    def sent(self) -> bool:
        return bool(self.results) and all(result.ok for result in self.results)

    @property
    def error(self) -> Optional[str]:
        for result in self.results:
            if not result.ok:
                return f"{result.recipient}: {result.error}"
        if not self.results:
            return "No recipients configured"
        return None


class NotificationService:
    def __init__(
        self,
        mailer: MailService,
        pdf: PdfService,
        base_url: str,
        approver_emails: list[str],
        notify_requester_on_submit: bool = True,
    ):
        self.mailer = mailer
        self.pdf = pdf
        self.base_url = base_url.rstrip("/")
        self.approver_emails = list(approver_emails)
        self.notify_requester_on_submit = notify_requester_on_submit

    def approval_link(self, record: RequestRecord) -> str:
        return f"{self.base_url}/approve/{quote(record.request_id)}?token={quote(record.approval_token)}"

    def _render_attachment(self, record: RequestRecord, filename: str) -> list[MailAttachment]:
        try:
            content = self.pdf.render_request_pdf(record)
        except Exception:
            logger.exception("PDF rendering failed for %s; sending without attachment.", record.request_id)
            return []
        return [MailAttachment(filename=filename, content=content)]

    def approver_email_html(self, record: RequestRecord) -> str:
        link = escape(self.approval_link(record))
        department = (
            f"<p><strong>Department:</strong> {escape(record.department)}</p>" if record.department else ""
        )
        return f"""
      <h2>New Equipment Request</h2>
      <p><strong>Request ID:</strong> {escape(record.request_id)}</p>
      <p><strong>Requester Name:</strong> {escape(record.requester_name)}</p>
      <p><strong>Email:</strong> {escape(record.requester_email)}</p>
      {department}
      <p><strong>Number of Items:</strong> {len(record.equipment_items)}</p>
      <p>Please see the attached PDF for full details.</p>
      <hr style="margin: 20px 0; border: none; border-top: 1px solid #ddd;">
      <h3>Action Required:</h3>
      <p>Please review and approve or reject this request:</p>
      <div style="margin: 20px 0;">
        <a href="{link}" style="display: inline-block; padding: 12px 24px; background-color: #2563eb; color: white; text-decoration: none; border-radius: 6px; font-weight: bold;">Review &amp; Approve</a>
      </div>
      <p style="color: #666; font-size: 12px; margin-top: 20px;">Or copy this link: {link}</p>
    """

    def confirmation_email_html(self, record: RequestRecord) -> str:
        return f"""
      <h2>Your Equipment Request Has Been Submitted</h2>
      <p>Dear {escape(record.requester_name)},</p>
      <p>Thank you for submitting your equipment request. Your request has been received and will be processed shortly.</p>
      <p><strong>Request ID:</strong> {escape(record.request_id)}</p>
      <p>Please see the attached PDF for a copy of your request.</p>
      <p>You will receive a notification email once your request has been reviewed.</p>
      <p>Best regards,<br>Equipment Request System</p>
    """

    def decision_email_html(self, record: RequestRecord) -> str:
        approved = record.approval_status == ApprovalStatus.APPROVED
        status_text = "APPROVED" if approved else "REJECTED"
        status_color = "#10b981" if approved else "#ef4444"
        date_line = (
            f"<p><strong>Date:</strong> {escape(format_date(record.approval_date))}</p>"
            if record.approval_date
            else ""
        )
        comments_line = (
            f"<p><strong>Comments:</strong> {escape(record.approval_comments)}</p>"
            if record.approval_comments
            else ""
        )
        closing = (
            "Your equipment request has been approved. You will be contacted regarding the next steps."
            if approved
            else "Your equipment request has been rejected. If you have any questions, please contact the approver."
        )
        return f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <p>Dear {escape(record.requester_name)},</p>
        <h2 style="color: {status_color}; margin-bottom: 20px;">Your Equipment Request Has Been {status_text}</h2>
        <div style="background-color: #f9fafb; padding: 20px; border-radius: 8px; margin-bottom: 20px;">
          <p><strong>Request ID:</strong> {escape(record.request_id)}</p>
          <p><strong>Approved By:</strong> {escape(record.approved_by or "")}</p>
          {date_line}
          <p><strong>Status:</strong> <span style="color: {status_color}; font-weight: bold;">{status_text}</span></p>
          {comments_line}
        </div>
        <p>{closing}</p>
        <p style="margin-top: 30px; color: #666; font-size: 12px;">Best regards,<br>Equipment Request System</p>
      </div>
    """

    def send_submission_notices(self, record: RequestRecord) -> DeliveryReport:
        report = DeliveryReport()
        attachments = self._render_attachment(record, SUBMISSION_PDF_NAME)

        subject = f"Equipment Request from {record.requester_name}"
        html = self.approver_email_html(record)
        for approver in self.approver_emails:
            report.results.append(self.mailer.send_mail(approver, subject, html, attachments))

        if self.notify_requester_on_submit:
            report.results.append(
                self.mailer.send_mail(
                    record.requester_email,
                    "Equipment Request Confirmation",
                    self.confirmation_email_html(record),
                    attachments,
                )
            )

        if not report.sent:
            logger.error(
                "Submission notices for %s incomplete, request was saved: %s",
                record.request_id,
                report.error,
            )
        return report

    def send_decision_notice(self, record: RequestRecord) -> DeliveryReport:
        status_text = "APPROVED" if record.approval_status == ApprovalStatus.APPROVED else "REJECTED"
        attachments = self._render_attachment(record, f"equipment-request-{record.request_id}.pdf")
        result = self.mailer.send_mail(
            record.requester_email,
            f"Equipment Request {status_text} - Request ID: {record.request_id}",
            self.decision_email_html(record),
            attachments,
        )
        report = DeliveryReport(results=[result])
        if not report.sent:
            logger.error(
                "Decision notice for %s not delivered, decision is recorded: %s",
                record.request_id,
                report.error,
            )
        return report
