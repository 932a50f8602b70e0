from __future__ import annotations

import base64
import logging
from email.mime.text import MIMEText
from html import escape
from typing import List, Protocol, Tuple

from .models import Lesson

LESSON_SUBJECT = "Lesson notice: {title}"
LESSON_BODY = """\
<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <h2 style="color: #4CAF50;">Lesson notice</h2>
    <p>Hello {recipient},</p>
    <p>Here are the details of your upcoming lesson:</p>
    <div style="background-color: #f5f5f5; padding: 15px; border-radius: 5px; margin: 20px 0;">
      <p><strong>Topic:</strong> {title}</p>
      <p><strong>Date:</strong> {date}</p>
      <p><strong>Time:</strong> {start} - {end}</p>
      <p><strong>Teacher:</strong> {teacher}</p>
      <p><strong>Student:</strong> {student}</p>
    </div>
    <p>The lesson has been added to your calendar.</p>
    <p style="margin-top: 30px; color: #666; font-size: 12px;">This message was sent automatically, please do not reply.</p>
  </body>
</html>
"""

CANCEL_SUBJECT = "Lesson cancelled: {title}"
CANCEL_BODY = """\
<html>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <h2 style="color: #d32f2f;">Lesson cancelled</h2>
    <p>Hello,</p>
    <p>The following lesson has been cancelled:</p>
    <div style="background-color: #f5f5f5; padding: 15px; border-radius: 5px; margin: 20px 0;">
      <p><strong>Topic:</strong> {title}</p>
      <p><strong>Planned date:</strong> {date}</p>
    </div>
    <p>The event has been removed from your calendar.</p>
    <p style="margin-top: 30px; color: #666; font-size: 12px;">This message was sent automatically, please do not reply.</p>
  </body>
</html>
"""


def lesson_notice(lesson: Lesson, role: str) -> Tuple[str, str]:
    subject = LESSON_SUBJECT.format(title=lesson.display_title)
    body = LESSON_BODY.format(
        recipient=escape(lesson.name_for(role) or lesson.email_for(role)),
        title=escape(lesson.display_title),
        date=lesson.date.isoformat(),
        start=lesson.start.strftime("%H:%M"),
        end=lesson.end.strftime("%H:%M"),
        teacher=escape(lesson.teacher_name),
        student=escape(lesson.student_name),
    )
    return subject, body


def cancellation_notice(title: str, date_text: str) -> Tuple[str, str]:
    title = title or "Lesson"
    return CANCEL_SUBJECT.format(title=title), CANCEL_BODY.format(title=escape(title), date=escape(date_text))


class Notifier(Protocol):
    def send_email(self, to: str, subject: str, html_body: str) -> None: ...


class GmailNotifier:
    def __init__(self, service, sender: str = "me") -> None:
        self.service = service
        self.sender = sender

    def send_email(self, to: str, subject: str, html_body: str) -> None:
        message = MIMEText(html_body, "html", "utf-8")
        message["To"] = to
        message["Subject"] = subject
        raw = base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")
        self.service.users().messages().send(userId=self.sender, body={"raw": raw}).execute()
        logging.info("Mail sent to %s: %s", to, subject)


class LogNotifier:
    """Records messages instead of sending them (dry runs, --no-notify)."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, str]] = []

    def send_email(self, to: str, subject: str, html_body: str) -> None:
        self.sent.append((to, subject, html_body))
        logging.info("Mail to %s not sent: %s", to, subject)
