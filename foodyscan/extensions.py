"""Application-wide Flask extensions."""

from flask_mail import Mail
from flask_sqlalchemy import SQLAlchemy


# A single SQLAlchemy handle for the application-owned tables (the local
# nutrition reference). User data lives in Supabase; see StorageService.
db = SQLAlchemy()

mail = Mail()
