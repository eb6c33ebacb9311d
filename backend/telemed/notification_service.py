"""
Notification Service for Telemed
Sends email and SMS updates about accounts and appointments.
Delivery is best-effort: failures are logged and never raised.
"""

from datetime import date
from typing import Optional

from twilio.rest import Client
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
import logging
from .config import settings

logger = logging.getLogger(__name__)


STATUS_HEADLINES = {
    "pending": "Appointment Pending",
    "confirmed": "Appointment Confirmed",
    "rejected": "Appointment Declined",
    "cancelled": "Appointment Cancelled",
}


class NotificationService:

    def __init__(self):
        self.twilio_account_sid = settings.TWILIO_ACCOUNT_SID
        self.twilio_auth_token = settings.TWILIO_AUTH_TOKEN
        self.twilio_phone_number = settings.TWILIO_PHONE_NUMBER

        self.sendgrid_api_key = settings.SENDGRID_API_KEY
        self.sendgrid_from_email = settings.SENDGRID_FROM_EMAIL

        self.twilio_client = None
        self.sendgrid_client = None

        if self.twilio_account_sid and self.twilio_auth_token:
            self.twilio_client = Client(self.twilio_account_sid, self.twilio_auth_token)
        else:
            logger.warning("Twilio credentials not found. SMS notifications disabled.")

        if self.sendgrid_api_key:
            self.sendgrid_client = SendGridAPIClient(self.sendgrid_api_key)
        else:
            logger.warning("SendGrid API key not found. Email notifications disabled.")

    async def send_sms(self, to_phone: str, message: str) -> bool:
        if settings.TWILIO_TEST_MODE.lower() == "true":
            logger.info(f"[TEST MODE SMS] To: {to_phone} | Message: {message}")
            return True

        if not self.twilio_client:
            logger.info("Twilio client not initialized, skipping SMS")
            return False

        try:
            message_response = self.twilio_client.messages.create(
                body=message,
                from_=self.twilio_phone_number,
                to=to_phone
            )
            logger.info(f"SMS sent successfully. SID: {message_response.sid}")
            return True
        except Exception as e:
            logger.error(f"Failed to send SMS: {str(e)}")
            return False

    async def send_email(self, to_email: str, subject: str, html_content: str) -> bool:
        if settings.MAILTRAP_MODE.lower() == "true":
            logger.info(f"[TEST MODE EMAIL] To: {to_email} | Subject: {subject}")
            return True

        if not self.sendgrid_client:
            logger.info("SendGrid client not initialized, skipping email")
            return False

        try:
            message = Mail(
                from_email=self.sendgrid_from_email,
                to_emails=to_email,
                subject=subject,
                html_content=html_content
            )
            response = self.sendgrid_client.send(message)
            logger.info(f"Email sent successfully. Status: {response.status_code}")
            return response.status_code in (200, 202)
        except Exception as e:
            logger.error(f"Failed to send email: {str(e)}")
            return False

    async def send_welcome_email(self, email: str, name: str, role: str) -> bool:
        """Send welcome email when account is created"""

        if role == "doctor":
            next_step = "Open your availability so patients can book consultations with you."
        else:
            next_step = "Find a doctor and book your first online consultation."

        subject = "Welcome to Telemed!"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif;">
                <h2>Welcome to Telemed!</h2>
                <p>Dear {name},</p>
                <p>Your account has been successfully created.</p>
                <p>{next_step}</p>
                <br>
                <p>Best regards,<br>Telemed Team</p>
            </body>
        </html>
        """

        return await self.send_email(email, subject, html_content)

    async def send_booking_received(
        self,
        patient_email: str,
        patient_phone: Optional[str],
        patient_name: str,
        chosen_date: date,
        doctor_name: str
    ) -> dict:
        date_str = chosen_date.strftime("%B %d, %Y")

        sms_message = (
            f"Telemed: your booking with {doctor_name} on {date_str} was received "
            f"and is waiting for the doctor's confirmation."
        )

        email_subject = "Booking Received - Telemed"
        email_html = f"""
        <html>
            <body style="font-family: Arial, sans-serif;">
                <h2>Booking Received</h2>
                <p>Dear {patient_name},</p>
                <p>Your consultation request has been recorded:</p>
                <ul>
                    <li><strong>Date:</strong> {date_str}</li>
                    <li><strong>Doctor:</strong> {doctor_name}</li>
                </ul>
                <p>We will let you know once the doctor confirms it.</p>
                <br>
                <p>Best regards,<br>Telemed Team</p>
            </body>
        </html>
        """

        sms_sent = await self.send_sms(patient_phone, sms_message) if patient_phone else False
        email_sent = await self.send_email(patient_email, email_subject, email_html)

        return {
            "sms_sent": sms_sent,
            "email_sent": email_sent,
        }

    async def send_status_update(
        self,
        patient_email: str,
        patient_name: str,
        chosen_date: date,
        doctor_name: str,
        status: str
    ) -> bool:
        """Tell the patient the doctor changed the appointment status"""

        date_str = chosen_date.strftime("%B %d, %Y")
        headline = STATUS_HEADLINES.get(status, "Appointment Updated")

        subject = f"{headline} - Telemed"
        html_content = f"""
        <html>
            <body style="font-family: Arial, sans-serif;">
                <h2>{headline}</h2>
                <p>Dear {patient_name},</p>
                <p>Your appointment is now <strong>{status}</strong>:</p>
                <ul>
                    <li><strong>Date:</strong> {date_str}</li>
                    <li><strong>Doctor:</strong> {doctor_name}</li>
                </ul>
                <br>
                <p>Best regards,<br>Telemed Team</p>
            </body>
        </html>
        """

        return await self.send_email(patient_email, subject, html_content)


notification_service = NotificationService()
