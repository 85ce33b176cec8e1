from celery import Celery

# Create Celery app
celery = Celery("voter_portal")

# Load configuration from voter_portal.config.celeryconfig module
celery.config_from_object("voter_portal.config.celeryconfig")
