from .whatsapp_notification_sender import send_whatsapp_message_task

__all__ = ["send_whatsapp_message_task"]
