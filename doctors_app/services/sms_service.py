"""
SMS Service
Sends appointment SMS through the Twilio REST API.
Without credentials configured, messages are only logged (development mode).
"""

import logging
from typing import Optional

import httpx

from .. import config
from ..shared.validators import format_senegal_phone

logger = logging.getLogger(__name__)


def sms_enabled() -> bool:
    sid = config.SMS_ACCOUNT_SID
    return bool(sid and config.SMS_AUTH_TOKEN and sid.startswith("AC"))


async def send_sms(to_phone: Optional[str], message_body: str) -> tuple[bool, Optional[str]]:
    """
    Send an SMS.

    Args:
        to_phone: Recipient phone number, normalized to E.164 before sending
        message_body: SMS message content

    Returns:
        Tuple of (success: bool, error_message: Optional[str]). Never raises.
    """
    if not to_phone:
        logger.debug("No phone number provided, SMS skipped")
        return False, "No phone number provided"

    to_phone = format_senegal_phone(to_phone)
    if not to_phone.startswith("+"):
        logger.warning(f"Phone number not in E.164 format: {to_phone}")
        return False, "Phone number must be in E.164 format (e.g., +221771234567)"

    if not sms_enabled():
        logger.info(f"📱 [DEV MODE] SMS for {to_phone}: {message_body}")
        return True, None

    account_sid = config.SMS_ACCOUNT_SID
    try:
        logger.info(f"🚀 Sending SMS to Twilio API for {to_phone}")
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json",
                auth=(account_sid, config.SMS_AUTH_TOKEN),
                data={"To": to_phone, "From": config.SMS_FROM_NUMBER, "Body": message_body},
                timeout=config.NOTIFICATION_TIMEOUT,
            )

        if response.status_code in [200, 201]:
            message_sid = response.json().get("sid")
            logger.info(f"✅ SMS sent successfully to {to_phone} (SID: {message_sid})")
            return True, None

        error_data = response.json()
        error_message = error_data.get("message", "Unknown error")
        logger.error(f"❌ Twilio API error [{error_data.get('code')}]: {error_message}")
        return False, error_message

    except httpx.HTTPError as e:
        logger.error(f"❌ Twilio API error: {str(e)}")
        return False, str(e)
    except Exception as e:
        logger.error(f"❌ Error sending SMS: {str(e)}")
        return False, str(e)


# SMS Template Functions
def appointment_confirmation_message(
    doctor_name: str, date: str, time: str, clinic_name: str, clinic_address: str
) -> str:
    return (
        f"Appointment booked with Dr {doctor_name} on {date} at {time}. "
        f"Location: {clinic_name}, {clinic_address}. Thank you!"
    )


def appointment_cancellation_message(
    counterpart_name: str, date: str, time: str, reason: Optional[str] = None
) -> str:
    message = f"Appointment cancelled: {counterpart_name} on {date} at {time}."
    if reason:
        message += f" Reason: {reason}"
    return message


def appointment_reminder_message(doctor_name: str, date: str, time: str, clinic_name: str) -> str:
    return (
        f"Reminder: appointment with Dr {doctor_name} on {date} at {time} - {clinic_name}. "
        "To cancel, please contact the clinic."
    )
