import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import List, Optional

import structlog

from app.core.config import settings


logger = structlog.get_logger(__name__)



def _send(to_email: str, subject: str, body: str) -> bool:
    if not settings.EMAIL_HOST:
        logger.warning("email_skipped_not_configured", to=to_email, subject=subject)
        return False

    msg = MIMEMultipart()
    msg['From'] = settings.EMAIL_FROM
    msg['To'] = to_email
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain', 'utf-8'))

    smtp_class = smtplib.SMTP_SSL if settings.EMAIL_SECURE else smtplib.SMTP
    with smtp_class(settings.EMAIL_HOST, settings.EMAIL_PORT) as server:
        if not settings.EMAIL_SECURE:
            server.starttls()
        if settings.EMAIL_USER:
            server.login(settings.EMAIL_USER, settings.EMAIL_PASSWORD or '')
        server.sendmail(settings.EMAIL_FROM, to_email, msg.as_string())
    logger.info("email_sent", to=to_email, subject=subject)
    return True




def send_confirmation_email(
    to_email: str,
    first_name: str,
    last_name: str,
    event_name: str,
    amount_display: str,
    registration_id: str,
    explanation_detail: Optional[str] = None,
) -> bool:
    receipt_url = f"{settings.APP_URL}/register/receipt/{registration_id}"
    details = f"\nDetails:    {explanation_detail}" if explanation_detail else ''
    body = f'''
Hello {first_name},

Your registration for {event_name} has been confirmed.

Attendee:   {first_name} {last_name}
Event:      {event_name}{details}
Amount:     {amount_display}

Confirmation ID: {registration_id}
View your receipt: {receipt_url}

Best regards,
The Registration Team
    '''
    return _send(to_email, f'Registration Confirmed - {event_name}', body)




def send_group_receipt_email(
    to_email: str,
    event_name: str,
    member_lines: List[str],
    subtotal_display: str,
    surcharge_line: Optional[str],
    total_display: str,
    primary_registration_id: str,
) -> bool:
    receipt_url = f"{settings.APP_URL}/register/receipt/{primary_registration_id}"
    members = '\n'.join(f'  - {line}' for line in member_lines)
    surcharge = f"\n{surcharge_line}" if surcharge_line else ''
    body = f'''
Hello,

Your group registration for {event_name} has been confirmed.

Registrants:
{members}

Subtotal:   {subtotal_display}{surcharge}
Total:      {total_display}

Confirmation ID: {primary_registration_id}
View your receipt: {receipt_url}

Best regards,
The Registration Team
    '''
    return _send(to_email, f'Group Registration Confirmed - {event_name}', body)
