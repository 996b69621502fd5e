"""
Email Service using Resend

Handles sending the verification workflow emails:
- verifier invitations and review requests to platform verifiers
- decision notifications to claim owners
- background verification requests to students
- referee notifications (direct chat link or magic link)

All user-supplied values are HTML-escaped before being placed in templates.
"""

import asyncio
import logging
from html import escape

import resend

from app.core.config import settings

logger = logging.getLogger(__name__)

resend.api_key = settings.resend_api_key

_STYLES = """
    body { font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }
    .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
    .header { color: #1e3a8a; margin-bottom: 24px; }
    .button { display: inline-block; background-color: #1e3a8a; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }
    .info-box { background-color: #f3f4f6; padding: 16px; border-radius: 8px; margin: 16px 0; }
    .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }
"""


def _layout(title: str, body: str, footer: str = "") -> str:
    """Wrap template body in the shared HTML layout."""
    return f"""
    <!DOCTYPE html>
    <html>
    <head><style>{_STYLES}</style></head>
    <body>
        <div class="container">
            <h1 class="header">{title}</h1>
            {body}
            <div class="footer">
                {footer}
                <p>TruePort - Verified Portfolios</p>
            </div>
        </div>
    </body>
    </html>
    """


def _button(url: str, label: str) -> str:
    return f"""
            <a href="{url}" class="button">{label}</a>
            <p>Or copy and paste this link into your browser:</p>
            <p style="word-break: break-all; color: #3b82f6;">{url}</p>
    """


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
) -> bool:
    """
    Send an email using Resend.

    When RESEND_API_KEY is not configured the email is logged instead.

    Returns:
        True if email was sent (or logged) successfully
    """
    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return True

    try:
        params: resend.Emails.SendParams = {
            "from": settings.email_from,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }

        # Resend's client is synchronous
        email = await asyncio.to_thread(resend.Emails.send, params)
        logger.info(f"Email sent successfully to {to_email}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


async def send_verifier_invite(
    to_email: str,
    verifier_name: str | None,
    student_name: str,
    item_title: str,
    item_type: str,
    invite_url: str,
    expires_hours: int,
    message: str | None = None,
) -> bool:
    """Invite an external verifier to confirm a claim item."""
    safe_verifier = escape(verifier_name or "there")
    safe_student = escape(student_name)
    safe_title = escape(item_title)
    safe_type = escape(item_type.lower())

    personal_note = ""
    if message:
        personal_note = f'<div class="info-box"><p>{escape(message)}</p></div>'

    body = f"""
            <p>Hello {safe_verifier},</p>
            <p><strong>{safe_student}</strong> has asked you to verify the following {safe_type} entry on their portfolio:</p>
            <div class="info-box"><p><strong>{safe_title}</strong></p></div>
            {personal_note}
            <p>Open the invitation to review the details and approve or reject the claim:</p>
            {_button(invite_url, "Review Invitation")}
            <p><strong>This link expires in {expires_hours} hours.</strong></p>
    """
    footer = "<p>If you don't recognise this request you can ignore it or report it from the invitation page.</p>"
    return await send_email(
        to_email=to_email,
        subject=f"{safe_student} asked you to verify their {safe_type}",
        html_content=_layout("Verification Request", body, footer),
    )


async def send_verification_request(
    to_email: str,
    verifier_name: str | None,
    student_name: str,
    item_title: str,
    item_type: str,
    review_url: str,
) -> bool:
    """Ask a platform verifier to review a claim item from their dashboard."""
    safe_verifier = escape(verifier_name or "there")
    safe_student = escape(student_name)
    safe_title = escape(item_title)
    safe_type = escape(item_type.lower())

    body = f"""
            <p>Hello {safe_verifier},</p>
            <p><strong>{safe_student}</strong> has asked you to verify the following {safe_type} entry on their portfolio:</p>
            <div class="info-box"><p><strong>{safe_title}</strong></p></div>
            <p>Sign in to review the details and approve or reject the claim:</p>
            {_button(review_url, "Review Request")}
    """
    return await send_email(
        to_email=to_email,
        subject=f"{safe_student} asked you to verify their {safe_type}",
        html_content=_layout("Verification Request", body),
    )


async def send_verification_decision(
    to_email: str,
    student_name: str,
    item_title: str,
    item_type: str,
    status: str,
    comment: str | None,
    verifier_name: str | None,
) -> bool:
    """Tell a claim owner that their item was approved or rejected."""
    approved = status == "APPROVED"
    safe_student = escape(student_name)
    safe_title = escape(item_title)
    safe_type = escape(item_type.lower())
    safe_verifier = escape(verifier_name or "Your verifier")
    outcome = "approved" if approved else "rejected"

    comment_block = ""
    if comment:
        comment_block = f'<div class="info-box"><p><strong>Comment:</strong> {escape(comment)}</p></div>'

    body = f"""
            <p>Hello {safe_student},</p>
            <p>{safe_verifier} has <strong>{outcome}</strong> your {safe_type} entry <strong>{safe_title}</strong>.</p>
            {comment_block}
            {_button(f"{settings.frontend_url}/dashboard", "View Portfolio")}
    """
    return await send_email(
        to_email=to_email,
        subject=f"Your {safe_type} was {outcome}",
        html_content=_layout(f"Verification {outcome.title()}", body),
    )


async def send_bg_request_to_student(
    to_email: str,
    student_name: str,
    verifier_name: str,
    verifier_institute: str,
    referees_requested: int,
) -> bool:
    """Ask a student to submit referee contacts for a background check."""
    safe_student = escape(student_name)
    safe_verifier = escape(verifier_name)
    safe_institute = escape(verifier_institute)

    body = f"""
            <p>Hello {safe_student},</p>
            <p><strong>{safe_verifier}</strong> from <strong>{safe_institute}</strong> has requested a background verification.</p>
            <p>Please submit <strong>{referees_requested}</strong> referee contact(s) who can vouch for you.</p>
            {_button(f"{settings.frontend_url}/bg-verification/requests", "Submit Referees")}
            <p><strong>This request expires in {settings.bg_verification_ttl_days} days.</strong></p>
    """
    return await send_email(
        to_email=to_email,
        subject=f"Background verification request from {safe_institute}",
        html_content=_layout("Background Verification Request", body),
    )


async def send_bg_referee_notification(
    to_email: str,
    referee_name: str,
    verifier_name: str,
    student_name: str,
    chat_url: str,
) -> bool:
    """Notify an existing platform user that they were named as a referee."""
    safe_referee = escape(referee_name)
    safe_verifier = escape(verifier_name)
    safe_student = escape(student_name)

    body = f"""
            <p>Hello {safe_referee},</p>
            <p><strong>{safe_student}</strong> listed you as a referee. <strong>{safe_verifier}</strong> would like to chat with you about them.</p>
            {_button(chat_url, "Open Chat")}
    """
    return await send_email(
        to_email=to_email,
        subject=f"{safe_student} listed you as a referee",
        html_content=_layout("Referee Request", body),
    )


async def send_magic_link_to_external(
    to_email: str,
    referee_name: str,
    magic_link_url: str,
    verifier_name: str,
    student_name: str,
) -> bool:
    """Invite an off-platform referee to join via a single-use magic link."""
    safe_referee = escape(referee_name)
    safe_verifier = escape(verifier_name)
    safe_student = escape(student_name)

    body = f"""
            <p>Hello {safe_referee},</p>
            <p><strong>{safe_student}</strong> listed you as a referee on TruePort. <strong>{safe_verifier}</strong> would like to ask you a few questions.</p>
            <p>Use the button below to set a password and open the conversation. No prior account is needed.</p>
            {_button(magic_link_url, "Join Conversation")}
            <p><strong>This link can be used once and expires in {settings.magic_link_ttl_days} days.</strong></p>
    """
    footer = "<p>If you don't know this person you can safely ignore this email.</p>"
    return await send_email(
        to_email=to_email,
        subject=f"{safe_student} listed you as a referee",
        html_content=_layout("You've Been Listed as a Referee", body, footer),
    )
