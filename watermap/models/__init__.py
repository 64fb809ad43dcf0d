"""
WaterMap Catalog
SQLAlchemy models package.

The shared ``db`` instance lives here and is bound to the Flask app
inside ``create_app()``.  Model modules import it from this package:

    from watermap.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
