"""
Workshop Enrollment Platform
Model package — shared Flask-SQLAlchemy handle.

Every model module does ``from app.models import db``; the application
factory calls ``db.init_app(app)``.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
