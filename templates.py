"""
Email bodies and the HTML pages served to email-link clicks.
"""
from datetime import datetime, timezone
from html import escape
from typing import Tuple

SHOP_NAME = "FleurEase"

_EMAIL_SHELL = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: linear-gradient(135deg, #6b46c1 0%, #8b5cf6 100%); padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
        <h1 style="color: white; margin: 0;">{shop}</h1>
    </div>
    <div style="background-color: #f8f9fa; padding: 30px; border-radius: 0 0 10px 10px;">
        {body}
        <hr style="border: none; border-top: 1px solid #ddd; margin: 30px 0;">
        <p style="color: #999; font-size: 12px; text-align: center;">&copy; {year} {shop}. All rights reserved.</p>
    </div>
</div>
"""

_BUTTON = (
    '<div style="text-align: center; margin: 30px 0;">'
    '<a href="{url}" style="background: #6b46c1; color: white; padding: 15px 40px; '
    'text-decoration: none; border-radius: 25px; font-weight: bold; display: inline-block;">{label}</a>'
    "</div>"
)

_PAGE = """<!DOCTYPE html>
<html>
<head>
    <title>{title}</title>
    <style>
        body {{ font-family: Arial, sans-serif; display: flex; justify-content: center; align-items: center; height: 100vh; margin: 0; background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); }}
        .container {{ background: white; padding: 40px; border-radius: 15px; text-align: center; max-width: 500px; }}
        h1 {{ color: {color}; margin-bottom: 20px; }}
        p {{ color: #666; font-size: 16px; line-height: 1.6; }}
        a {{ display: inline-block; margin-top: 20px; padding: 12px 30px; background: #6b46c1; color: white; text-decoration: none; border-radius: 25px; font-weight: bold; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>{heading}</h1>
        {body}
    </div>
</body>
</html>
"""


def _email(body: str) -> str:
    return _EMAIL_SHELL.format(shop=SHOP_NAME, body=body, year=datetime.now(timezone.utc).year)


def _paragraph(text: str) -> str:
    return f'<p style="color: #333; font-size: 16px; line-height: 1.6;">{text}</p>'


def verification_email(name: str, url: str) -> Tuple[str, str]:
    body = "".join([
        f"<h2>Hello {escape(name)}!</h2>",
        _paragraph("Thank you for registering with us! To complete your registration, "
                   "please verify your email address by clicking the button below:"),
        _BUTTON.format(url=escape(url, quote=True), label="Verify Email Address"),
        _paragraph(f'Or copy and paste this link in your browser:<br><a href="{escape(url, quote=True)}">{escape(url)}</a>'),
        _paragraph("This verification link will expire in 24 hours."),
        _paragraph("If you didn't create an account with us, please ignore this email."),
    ])
    return f"Verify Your Email - {SHOP_NAME}", _email(body)


def password_reset_email(url: str) -> Tuple[str, str]:
    body = "".join([
        "<h2>Password recovery</h2>",
        _paragraph("Your password reset link is below."),
        _BUTTON.format(url=escape(url, quote=True), label="Reset Password"),
        _paragraph("If you have not requested this email, then ignore it."),
    ])
    return f"{SHOP_NAME} Password Recovery", _email(body)


def suspension_email(name: str, reason: str, subject: str = "") -> Tuple[str, str]:
    heading = subject or "Account Suspended"
    body = "".join([
        f'<h2 style="color: #6b46c1;">{escape(heading)}</h2>',
        _paragraph(f"Dear {escape(name)},"),
        _paragraph("Your account has been suspended by an administrator."),
        _paragraph(f"<strong>Reason:</strong> {escape(reason)}"),
        _paragraph("If you believe this is a mistake, please contact our support team."),
    ])
    return subject or f"Your {SHOP_NAME} Account Has Been Suspended", _email(body)


def reactivation_email(name: str, message: str, login_url: str, subject: str = "") -> Tuple[str, str]:
    heading = subject or "Account Reactivated"
    body = "".join([
        f'<h2 style="color: #28a745;">{escape(heading)}</h2>',
        _paragraph(f"Dear {escape(name)},"),
        _paragraph("Good news! Your account has been reactivated by an administrator."),
        _paragraph(f"<strong>Message:</strong> {escape(message)}"),
        _BUTTON.format(url=escape(login_url, quote=True), label="Login to Your Account"),
    ])
    return subject or f"Your {SHOP_NAME} Account Has Been Reactivated", _email(body)


def verification_success_page(login_url: str) -> str:
    body = (
        "<p>Your email has been verified. You can now log in to your account.</p>"
        f'<a href="{escape(login_url, quote=True)}">Go to Login</a>'
    )
    return _PAGE.format(title="Email Verified!", color="#27ae60", heading="Email Verified Successfully!", body=body)


def verification_failed_page(register_url: str) -> str:
    body = (
        "<p>Your verification link is invalid or has expired.</p>"
        "<p>Please register again or contact support.</p>"
        f'<a href="{escape(register_url, quote=True)}">Go to Register</a>'
    )
    return _PAGE.format(title="Verification Failed", color="#e74c3c", heading="Verification Failed", body=body)


def verification_error_page() -> str:
    body = "<p>An error occurred during verification. Please try again later.</p>"
    return _PAGE.format(title="Error", color="#e74c3c", heading="Something Went Wrong", body=body)
